"""The file device: reading, writing and listing files under the working directory."""

from __future__ import annotations

import logging
import os
import stat
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import BinaryIO, Union

log = logging.getLogger(__name__)

PORT_BASE = 0xA0
DEV_SIZE = 0x10
DEV_COUNT = 2

# Offsets within one file device's 16 ports.
_SUCCESS = 0x02
_DELETE = 0x06
_APPEND = 0x07
_NAME_H = 0x08
_NAME_L = 0x09
_LENGTH_H = 0x0A
_LENGTH_L = 0x0B
_READ_H = 0x0C
_READ_L = 0x0D
_WRITE_H = 0x0E
_WRITE_L = 0x0F

_RAM_SIZE = 0x10000


def file_ports_match(t: int) -> bool:
    """Return True if the port address ``t`` belongs to a file device."""
    return PORT_BASE <= t < PORT_BASE + DEV_SIZE * DEV_COUNT


def is_path_local(path: str | os.PathLike) -> bool:
    """Return True if ``path`` is relative and never climbs above its start.

    Only the depth is checked; symlinks are not resolved.
    """
    p = PurePath(path)
    if p.anchor:
        log.error("path %r is not relative", str(path))
        return False
    depth = 0
    for part in p.parts:
        if part == "..":
            if depth == 0:
                log.error("path %r escapes working directory", str(path))
                return False
            depth -= 1
        elif part != ".":
            depth += 1
    return True


def _get_u16(mem, addr: int) -> int:
    return (mem[addr] << 8) | mem[addr + 1]


def _set_u16(mem, addr: int, value: int) -> None:
    value &= 0xFFFF
    mem[addr] = value >> 8
    mem[addr + 1] = value & 0xFF


@dataclass
class _ReadFile:
    path: str
    file: BinaryIO

    def close(self) -> None:
        self.file.close()


@dataclass
class _ReadDir:
    path: str
    entries: Iterator[os.DirEntry]
    scratch: deque[int] = field(default_factory=deque)

    def close(self) -> None:
        close = getattr(self.entries, "close", None)
        if close is not None:
            close()


@dataclass
class _WriteFile:
    path: str
    file: BinaryIO

    def close(self) -> None:
        self.file.close()


_Handle = Union[_ReadFile, _ReadDir, _WriteFile]


def _listing_line(entry: os.DirEntry) -> bytes:
    """Format one directory entry as ``"<size> <name>\\n"``; may raise OSError."""
    st = entry.stat(follow_symlinks=False)
    if stat.S_ISDIR(st.st_mode):
        size = "----"
    elif st.st_size < 0xFFFF:
        size = f"{st.st_size:04x}"
    else:
        size = "????"
    return size.encode() + b" " + os.fsencode(entry.name) + b"\n"


class FileDevice:
    """Both file devices, sharing one open handle between them."""

    def __init__(self) -> None:
        self._handle: _Handle | None = None
        self._buf = bytearray()
        self._missing_files: set[str] = set()

    def _set_handle(self, handle: _Handle | None) -> None:
        old, self._handle = self._handle, handle
        if old is not None and old is not handle:
            old.close()

    @staticmethod
    def _decode_target(target: int) -> tuple[int, int]:
        return (target - PORT_BASE) // DEV_SIZE, target & 0xF

    @staticmethod
    def _base(index: int) -> int:
        return PORT_BASE + index * DEV_SIZE

    def _filename(self, vm, index: int) -> str | None:
        addr = _get_u16(vm.dev, self._base(index) + _NAME_H)
        out = bytearray()
        for k in range(_RAM_SIZE):
            b = vm.ram[(addr + k) & 0xFFFF]
            if b == 0:
                break
            out.append(b)
        else:
            log.error("could not read filename from VM: no terminator")
            return None
        try:
            return out.decode("utf-8")
        except UnicodeDecodeError as e:
            log.error("could not read filename from VM: %s", e)
            return None

    def _resize_buf(self, size: int) -> None:
        if len(self._buf) > size:
            del self._buf[size:]
        else:
            self._buf.extend(bytes(size - len(self._buf)))

    def deo(self, vm, target: int) -> None:
        """Handle a write to a file port."""
        index, port = self._decode_target(target)
        if port == _DELETE:
            self._delete(vm, index)
        elif port in (_NAME_H, _NAME_L):
            self._set_handle(None)
        elif port == _READ_L:
            self._read(vm, index)
        elif port == _WRITE_L:
            self._write(vm, index)
        elif port in (_APPEND, _LENGTH_H, _LENGTH_L, _READ_H, _WRITE_H):
            pass
        else:
            log.warning("unknown file deo: %02x", port)

    def _delete(self, vm, index: int) -> None:
        self._set_handle(None)
        success = self._base(index) + _SUCCESS
        _set_u16(vm.dev, success, 0xFFFF)
        name = self._filename(vm, index)
        if name is None or not is_path_local(name):
            return
        try:
            os.remove(name)
        except OSError:
            return
        _set_u16(vm.dev, success, 0)

    def _open_for_write(self, vm, index: int) -> bool:
        name = self._filename(vm, index)
        if name is None:
            return False
        if not is_path_local(name):
            log.error("path %r escapes working directory", name)
            return False
        flags = os.O_WRONLY | os.O_CREAT | getattr(os, "O_BINARY", 0)
        if vm.dev[self._base(index) + _APPEND] == 0x1:
            flags |= os.O_APPEND
        try:
            fd = os.open(name, flags, 0o666)
        except OSError as e:
            log.error("could not open %r: %s", name, e)
            return False
        try:
            mode = os.fstat(fd).st_mode
        except OSError as e:
            os.close(fd)
            log.error("could not check metadata for %r: %s", name, e)
            return False
        if stat.S_ISDIR(mode):
            os.close(fd)
            log.warning("%r is a directory; skipping", name)
            return False
        log.debug("opened %r as file for writing", name)
        self._set_handle(_WriteFile(name, os.fdopen(fd, "wb", buffering=0)))
        return True

    def _write(self, vm, index: int) -> None:
        base = self._base(index)
        _set_u16(vm.dev, base + _SUCCESS, 0)
        if not isinstance(self._handle, _WriteFile) and not self._open_for_write(vm, index):
            return
        handle = self._handle
        assert isinstance(handle, _WriteFile)

        length = _get_u16(vm.dev, base + _LENGTH_H)
        addr = _get_u16(vm.dev, base + _WRITE_H)
        self._buf = bytearray(vm.ram[(addr + k) & 0xFFFF] for k in range(length))
        try:
            n = handle.file.write(self._buf)
        except OSError as e:
            log.error("could not write to %r: %s", handle.path, e)
            return
        if n != len(self._buf):
            log.error("could not write all bytes to file")
            return
        _set_u16(vm.dev, base + _SUCCESS, n)

    def _open_for_read(self, vm, index: int) -> bool:
        name = self._filename(vm, index)
        if name is None:
            return False
        if not os.path.exists(name):
            if name not in self._missing_files:
                self._missing_files.add(name)
                log.error("%r is missing", name)
            return False
        if not is_path_local(name):
            log.error("path %r escapes working directory", name)
            return False
        if os.path.isdir(name):
            try:
                entries = os.scandir(name)
            except OSError as e:
                log.error("could not open dir for %r: %s", name, e)
                return False
            log.debug("opened %r as dir for reading", name)
            self._set_handle(_ReadDir(name, entries))
        else:
            try:
                f = open(name, "rb")
            except OSError as e:
                log.error("could not open %r: %s", name, e)
                return False
            log.debug("opened %r as file for reading", name)
            self._set_handle(_ReadFile(name, f))
        return True

    def _fill_from_dir(self, handle: _ReadDir) -> int | None:
        size = len(self._buf)
        n = 0
        while n != size:
            while n < size and handle.scratch:
                self._buf[n] = handle.scratch.popleft()
                n += 1
            if n < size and not handle.scratch:
                try:
                    entry = next(handle.entries, None)
                except OSError as e:
                    log.error("error while iterating over %r: %s", handle.path, e)
                    return None
                if entry is None:
                    break
                try:
                    handle.scratch.extend(_listing_line(entry))
                except OSError as e:
                    log.error("could not get entry metadata: %s", e)
                    return None
        return n

    def _read(self, vm, index: int) -> None:
        base = self._base(index)
        _set_u16(vm.dev, base + _SUCCESS, 0)
        if not isinstance(self._handle, (_ReadFile, _ReadDir)) and not self._open_for_read(vm, index):
            return
        handle = self._handle

        self._resize_buf(_get_u16(vm.dev, base + _LENGTH_H))
        if isinstance(handle, _ReadFile):
            try:
                data = handle.file.read(len(self._buf))
            except OSError as e:
                log.error("failed to read file at %r: %s", handle.path, e)
                return
            self._buf[:len(data)] = data
            n = len(data)
        else:
            assert isinstance(handle, _ReadDir)
            n = self._fill_from_dir(handle)
            if n is None:
                return

        _set_u16(vm.dev, base + _SUCCESS, n)
        addr = _get_u16(vm.dev, base + _READ_H)
        for k, b in enumerate(self._buf):
            vm.ram[(addr + k) & 0xFFFF] = b
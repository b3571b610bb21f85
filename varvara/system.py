"""The system device: expansion banks, stack control, palette and exit state.

Devices work against a VM object that exposes:

* ``dev``: a 256-byte mutable buffer of device memory,
* ``ram``: a 65536-byte mutable buffer of main memory,
* ``stack`` and ``ret``: stacks supporting ``len()``, ``set_len(n)`` and
  ``peek_byte_at(i)``.
"""

from __future__ import annotations

import logging
import struct
from enum import IntEnum

log = logging.getLogger(__name__)

PORT_BASE = 0x00

_EXPANSION = 0x03
_WST = 0x04
_RST = 0x05
_RED = 0x08
_GREEN = 0x0A
_BLUE = 0x0C
_DEBUG = 0x0E
_STATE = 0x0F

BANK_COUNT = 15
BANK_SIZE = 0x10000


class _Expansion(IntEnum):
    FILL = 0x00
    CPYL = 0x01
    CPYR = 0x02


def _read_u16(mem, addr: int) -> int:
    return (mem[addr] << 8) | mem[addr + 1]


def palette_color(vm, i: int) -> int:
    """Return the palette entry ``i`` (0-3) as a 0xAARRGGBB value."""
    shift = (3 - i) * 4
    r = (_read_u16(vm.dev, PORT_BASE + _RED) >> shift) & 0xF
    g = (_read_u16(vm.dev, PORT_BASE + _GREEN) >> shift) & 0xF
    b = (_read_u16(vm.dev, PORT_BASE + _BLUE) >> shift) & 0xF
    color = 0x0F000000 | (r << 16) | (g << 8) | b
    return color | (color << 4)


class System:
    """Timers-free system device: memory expansion, stacks, debug and exit."""

    def __init__(self) -> None:
        self.banks = [bytearray(BANK_SIZE) for _ in range(BANK_COUNT)]
        self._exit: int | None = None

    def reset(self, mem: bytes) -> None:
        """Load ``mem`` into the expansion banks, zeroing the rest."""
        offset = 0
        for bank in self.banks:
            chunk = mem[offset:offset + BANK_SIZE]
            bank[:len(chunk)] = chunk
            bank[len(chunk):] = bytes(BANK_SIZE - len(chunk))
            offset += len(chunk)
        self._exit = None

    def _memory(self, vm, bank: int):
        return vm.ram if bank == 0 else self.banks[bank - 1]

    @staticmethod
    def _read_args(vm, addr: int, count: int) -> bytes:
        return bytes(vm.ram[(addr + 1 + i) & 0xFFFF] for i in range(count))

    def _fill(self, vm, addr: int) -> None:
        length, bank, start, value = struct.unpack(">HHHB", self._read_args(vm, addr, 7))
        if not length:
            return
        mem = self._memory(vm, bank)
        for i in range(length):
            mem[(start + i) & 0xFFFF] = value

    def _copy(self, vm, addr: int, op: _Expansion) -> None:
        length, src_bank, src, dst_bank, dst = struct.unpack(
            ">HHHHH", self._read_args(vm, addr, 10)
        )
        if not length:
            return
        src_mem = self._memory(vm, src_bank)
        dst_mem = self._memory(vm, dst_bank)
        for i in range(length):
            step = i if op is _Expansion.CPYL else length - 1 - i
            dst_mem[(dst + step) & 0xFFFF] = src_mem[(src + step) & 0xFFFF]

    def _expansion(self, vm) -> None:
        addr = _read_u16(vm.dev, PORT_BASE + _EXPANSION - 1)
        op = vm.ram[addr]
        try:
            kind = _Expansion(op)
        except ValueError:
            log.warning("invalid expansion opcode %d", op)
            return
        if kind is _Expansion.FILL:
            self._fill(vm, addr)
        else:
            self._copy(vm, addr, kind)

    @staticmethod
    def _debug(vm) -> None:
        for name, st in (("WST", vm.stack), ("RST", vm.ret)):
            n = len(st)
            cells = "".join(
                f"{st.peek_byte_at(i):02x}{'|' if i == n else ' '}"
                for i in range(7, -1, -1)
            )
            print(f"{name} {cells}<")

    def deo(self, vm, target: int) -> None:
        """Handle a write to a system port."""
        if target == _EXPANSION:
            self._expansion(vm)
        elif target == _WST:
            vm.stack.set_len(vm.dev[PORT_BASE + _WST])
        elif target == _RST:
            vm.ret.set_len(vm.dev[PORT_BASE + _RST])
        elif target == _DEBUG:
            self._debug(vm)
        elif target == _STATE:
            state = vm.dev[PORT_BASE + _STATE]
            if state:
                self._exit = state & 0x7F

    def dei(self, vm, target: int) -> None:
        """Refresh a system port before it is read."""
        port = target & 0x0F
        if port == _WST:
            vm.dev[PORT_BASE + _WST] = len(vm.stack)
        elif port == _RST:
            vm.dev[PORT_BASE + _RST] = len(vm.stack)

    def should_exit(self) -> bool:
        """Return True if the VM has requested an exit."""
        return self._exit is not None

    def exit(self) -> int | None:
        """Return and clear the requested exit code, if any."""
        code, self._exit = self._exit, None
        return code
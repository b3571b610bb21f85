"""The console device: standard streams and program arguments."""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable
from enum import IntEnum

from varvara.events import Event, EventData

PORT_BASE = 0x10

_VECTOR = PORT_BASE
_READ = PORT_BASE | 0x02
_TYPE = PORT_BASE | 0x07
_WRITE = PORT_BASE | 0x08
_ERROR = PORT_BASE | 0x09


class ConsoleType(IntEnum):
    """Kind of character delivered through the console read port."""

    NO_QUEUE = 0
    STDIN = 1
    ARGUMENT = 2
    ARGUMENT_SPACER = 3
    ARGUMENT_END = 4


def spawn_worker(tx: Callable[[int], object]) -> threading.Thread:
    """Start a daemon thread feeding each byte of stdin to ``tx``.

    The worker stops at end of input, or when ``tx`` returns ``False``.
    """
    stream = sys.stdin.buffer

    def run() -> None:
        while chunk := stream.read1(32):
            for c in chunk:
                if tx(c) is False:
                    return

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


class Console:
    """Collects console output and builds input events."""

    def __init__(self) -> None:
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._stdout_listeners: list[Callable[[int], None]] = []
        self._stderr_listeners: list[Callable[[int], None]] = []

    def register_stderr_listener(self, listener: Callable[[int], None]) -> None:
        """Call ``listener`` with every byte written to the error port."""
        self._stderr_listeners.append(listener)

    def register_stdout_listener(self, listener: Callable[[int], None]) -> None:
        """Call ``listener`` with every byte written to the write port."""
        self._stdout_listeners.append(listener)

    def deo(self, vm, target: int) -> None:
        """Handle a write to a console port."""
        if target == _WRITE:
            buffer, listeners = self._stdout, self._stdout_listeners
        elif target == _ERROR:
            buffer, listeners = self._stderr, self._stderr_listeners
        else:
            return
        value = vm.dev[target]
        buffer.append(value)
        for listener in listeners:
            listener(value)

    def dei(self, vm, target: int) -> None:
        """Reads need no work: the data already sits in device memory."""

    def set_has_args(self, vm, has_args: bool) -> None:
        """Mark that arguments will follow; call before the reset vector."""
        if has_args:
            vm.dev[_TYPE] = ConsoleType.STDIN

    def set_type(self, vm, ty: ConsoleType) -> None:
        """Set the type of the next character delivered."""
        vm.dev[_TYPE] = int(ty)

    def update(self, vm, c: int) -> Event:
        """Return an event that stores ``c`` in the read port and calls the vector."""
        vector = (vm.dev[_VECTOR] << 8) | vm.dev[_VECTOR + 1]
        return Event(vector=vector, data=EventData(addr=_READ, value=c, clear=False))

    def stdout(self) -> bytes:
        """Take the collected stdout bytes, leaving the buffer empty."""
        data = bytes(self._stdout)
        self._stdout.clear()
        return data

    def stderr(self) -> bytes:
        """Take the collected stderr bytes, leaving the buffer empty."""
        data = bytes(self._stderr)
        self._stderr.clear()
        return data
"""Events passed from devices to the CPU, and the output handed to a front end."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventData:
    """A device-memory write to perform before calling an event vector."""

    addr: int
    value: int
    clear: bool = False


@dataclass(frozen=True)
class Event:
    """A vector to call, with an optional device-memory write beforehand."""

    vector: int
    data: EventData | None = None


@dataclass
class Output:
    """Snapshot of what the system produced since the last call for output."""

    size: tuple[int, int]
    frame: bytes
    hide_mouse: bool = False
    stdout: bytes = b""
    stderr: bytes = b""
    exit: int | None = field(default=None)

    def print(self) -> None:
        """Write the collected stdout and stderr bytes to the process streams."""
        for data, stream in ((self.stdout, sys.stdout), (self.stderr, sys.stderr)):
            if data:
                stream.buffer.write(data)
                stream.buffer.flush()
                stream.flush()

    def check(self) -> None:
        """Print the output, then exit the process if the VM asked to."""
        self.print()
        if self.exit is not None:
            log.info("requested exit (%d)", self.exit)
            sys.exit(self.exit)
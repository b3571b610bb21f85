"""The datetime device: reports the local date and time."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

PORT_BASE = 0xC0

_YEAR = PORT_BASE | 0x00
_MONTH = PORT_BASE | 0x02
_DAY = PORT_BASE | 0x03
_HOUR = PORT_BASE | 0x04
_MINUTE = PORT_BASE | 0x05
_SECOND = PORT_BASE | 0x06
_DAY_OF_WEEK = PORT_BASE | 0x07
_DAY_OF_YEAR = PORT_BASE | 0x08
_IS_DST = PORT_BASE | 0x0A


def _set_u16(dev, addr: int, value: int) -> None:
    dev[addr] = (value >> 8) & 0xFF
    dev[addr + 1] = value & 0xFF


class Datetime:
    """Fills date and time ports on read; ``clock`` supplies the current time."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or datetime.now

    def deo(self, vm, target: int) -> None:
        """The time cannot be changed: a written port is reset to the current time."""
        self.dei(vm, target)

    def dei(self, vm, target: int) -> None:
        """Refresh the port about to be read from the current local time."""
        dev = vm.dev
        t = self._clock()
        if target == _YEAR:
            _set_u16(dev, _YEAR, t.year)
        elif target == _MONTH:
            dev[_MONTH] = t.month
        elif target == _DAY:
            dev[_DAY] = t.day
        elif target == _HOUR:
            dev[_HOUR] = t.hour
        elif target == _MINUTE:
            dev[_MINUTE] = t.minute
        elif target == _SECOND:
            dev[_SECOND] = t.second
        elif target == _DAY_OF_WEEK:
            dev[_DAY_OF_WEEK] = t.isoweekday() % 7
        elif target == _DAY_OF_YEAR:
            _set_u16(dev, _DAY_OF_YEAR, t.timetuple().tm_yday)
        elif target == _IS_DST:
            dev[_IS_DST] = 0
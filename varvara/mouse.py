"""The mouse device: pointer position, buttons and scrolling."""

from __future__ import annotations

import math
from dataclasses import dataclass

from varvara.events import Event

PORT_BASE = 0x90

_VECTOR = PORT_BASE
_X = PORT_BASE | 0x02
_Y = PORT_BASE | 0x04
_STATE = PORT_BASE | 0x06
_SCROLL_X = PORT_BASE | 0x0A
_SCROLL_Y = PORT_BASE | 0x0C

_I16_MAX = 32767.0


def _set_u16(dev, addr: int, value: int) -> None:
    dev[addr] = (value >> 8) & 0xFF
    dev[addr + 1] = value & 0xFF


def _to_u16(v: float) -> int:
    """Truncate a float to an unsigned 16-bit value, saturating at the limits."""
    if math.isnan(v):
        return 0
    return int(max(0.0, min(v, 65535.0)))


@dataclass
class MouseState:
    """A snapshot of the pointer handed in by the front end."""

    pos: tuple[float, float] = (0.0, 0.0)
    scroll: tuple[float, float] = (0.0, 0.0)
    buttons: int = 0


class Mouse:
    """Tracks pointer state and reports changes as events."""

    def __init__(self) -> None:
        self._pos: tuple[float, float] = (0.0, 0.0)
        self._scroll = [0.0, 0.0]
        self._buttons = 0
        self._active = False

    def set_active(self) -> None:
        """Record that the program has touched the mouse ports."""
        self._active = True

    def is_active(self) -> bool:
        """Return True once the program has touched the mouse ports."""
        return self._active

    def _scroll_axis(self, dev, axis: int, port: int) -> bool:
        value = self._scroll[axis]
        if abs(value) > 1.0:
            amount = int(math.copysign(min(abs(value), _I16_MAX), value))
            _set_u16(dev, port, amount & 0xFFFF)
            self._scroll[axis] -= amount
            return True
        _set_u16(dev, port, 0)
        return False

    def update(self, vm, state: MouseState) -> Event | None:
        """Apply ``state`` to the ports, returning an event if anything changed."""
        dev = vm.dev
        changed = False

        if tuple(state.pos) != self._pos:
            _set_u16(dev, _X, _to_u16(state.pos[0]))
            _set_u16(dev, _Y, _to_u16(state.pos[1]))
            self._pos = tuple(state.pos)
            changed = True

        self._scroll[0] += state.scroll[0] / 5.0
        self._scroll[1] += state.scroll[1] / 5.0
        # Scrolls go out as whole ticks, one update per frame.
        changed |= self._scroll_axis(dev, 0, _SCROLL_X)
        changed |= self._scroll_axis(dev, 1, _SCROLL_Y)

        if state.buttons != self._buttons:
            dev[_STATE] = state.buttons
            self._buttons = state.buttons
            changed = True

        if changed:
            return Event(vector=(dev[_VECTOR] << 8) | dev[_VECTOR + 1])
        return None
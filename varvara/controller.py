"""The controller device: keyboard buttons and typed characters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from varvara.events import Event, EventData

PORT_BASE = 0x80

_VECTOR = PORT_BASE
_BUTTON = PORT_BASE | 0x02
_KEY = PORT_BASE | 0x03


class Key(Enum):
    """Non-character keys understood by the controller."""

    SHIFT = "shift"
    CTRL = "ctrl"
    ALT = "alt"
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    HOME = "home"
    END = "end"


@dataclass(frozen=True)
class CharKey:
    """A key that produces a single character byte."""

    value: int


# Bit order of the button port, lowest bit first.
_BUTTON_ORDER = (
    Key.CTRL,
    Key.ALT,
    Key.SHIFT,
    Key.HOME,
    Key.UP,
    Key.DOWN,
    Key.LEFT,
    Key.RIGHT,
)


def _vector(vm) -> int:
    return (vm.dev[_VECTOR] << 8) | vm.dev[_VECTOR + 1]


class Controller:
    """Tracks held keys and turns key activity into events."""

    def __init__(self) -> None:
        self._down: set[Key] = set()
        self._buttons = 0

    def char(self, vm, c: int) -> Event:
        """Return an event delivering the character ``c`` to the key port."""
        return Event(
            vector=_vector(vm),
            data=EventData(addr=_KEY, value=c, clear=True),
        )

    def pressed(self, vm, k: Key | CharKey, repeat: bool) -> Event | None:
        """Register a key press, returning an event if one is needed."""
        if isinstance(k, CharKey):
            return self.char(vm, k.value)
        self._down.add(k)
        return self._check_buttons(vm, repeat)

    def released(self, vm, k: Key | CharKey) -> Event | None:
        """Register a key release, returning an event if the buttons changed."""
        if isinstance(k, CharKey):
            return None
        self._down.discard(k)
        return self._check_buttons(vm, False)

    def _check_buttons(self, vm, repeat: bool) -> Event | None:
        buttons = 0
        for bit, key in enumerate(_BUTTON_ORDER):
            if key in self._down:
                buttons |= 1 << bit
        if buttons != self._buttons or repeat:
            self._buttons = buttons
            vm.dev[_BUTTON] = buttons
            return Event(vector=_vector(vm))
        return None
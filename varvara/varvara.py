"""The Varvara machine: routes port traffic to its devices and drives input events."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from varvara.audio import DEV_COUNT as AUDIO_DEV_COUNT
from varvara.audio import Audio, StreamData, audio_ports_match
from varvara.clock import PORT_BASE as DATETIME_BASE
from varvara.clock import Datetime
from varvara.console import PORT_BASE as CONSOLE_BASE
from varvara.console import Console, ConsoleType
from varvara.controller import PORT_BASE as CONTROLLER_BASE
from varvara.controller import CharKey, Controller, Key
from varvara.events import Event, Output
from varvara.filedev import FileDevice, file_ports_match
from varvara.mouse import PORT_BASE as MOUSE_BASE
from varvara.mouse import Mouse, MouseState
from varvara.screen import PORT_BASE as SCREEN_BASE
from varvara.screen import Screen
from varvara.system import PORT_BASE as SYSTEM_BASE
from varvara.system import System

log = logging.getLogger(__name__)


class Varvara:
    """The set of Varvara peripherals attached to one VM.

    The VM passed to each method exposes ``dev`` and ``ram`` buffers, the
    ``stack`` and ``ret`` stacks, and ``run(device, vector)`` which executes
    code from ``vector`` with this object handling port traffic.
    """

    def __init__(self) -> None:
        self.system = System()
        self.console = Console()
        self.datetime = Datetime()
        self.audio = Audio()
        self.screen = Screen()
        self.mouse = Mouse()
        self.file = FileDevice()
        self.controller = Controller()
        self.already_warned = [False] * 16

    def deo(self, vm, target: int) -> bool:
        """Handle a port write; return False once the program asked to exit."""
        base = target & 0xF0
        if base == SYSTEM_BASE:
            self.system.deo(vm, target)
        elif base == CONSOLE_BASE:
            self.console.deo(vm, target)
        elif base == DATETIME_BASE:
            self.datetime.deo(vm, target)
        elif base == SCREEN_BASE:
            self.screen.deo(vm, target)
        elif base == MOUSE_BASE:
            self.mouse.set_active()
        elif file_ports_match(base):
            self.file.deo(vm, target)
        elif base == CONTROLLER_BASE:
            pass
        elif audio_ports_match(base):
            self.audio.deo(vm, target)
        else:
            self._warn_missing(base)
        return not self.system.should_exit()

    def dei(self, vm, target: int) -> None:
        """Refresh a port before the program reads it."""
        base = target & 0xF0
        if base == SYSTEM_BASE:
            self.system.dei(vm, target)
        elif base == CONSOLE_BASE:
            self.console.dei(vm, target)
        elif base == DATETIME_BASE:
            self.datetime.dei(vm, target)
        elif base == SCREEN_BASE:
            self.screen.dei(vm, target)
        elif base == MOUSE_BASE:
            self.mouse.set_active()
        elif file_ports_match(base) or base == CONTROLLER_BASE:
            pass
        elif audio_ports_match(base):
            self.audio.dei(vm, target)
        else:
            self._warn_missing(base)

    def _warn_missing(self, t: int) -> None:
        index = t >> 4
        if not self.already_warned[index]:
            log.warning("unimplemented device %#04x", t)
            self.already_warned[index] = True

    def reset(self, extra: bytes) -> None:
        """Reset every device, loading ``extra`` into expansion memory.

        Audio stream objects are kept, so audio threads may keep running.
        """
        self.system.reset(extra)
        self.console = Console()
        self.audio.reset()
        self.screen = Screen()
        self.mouse = Mouse()
        self.file = FileDevice()
        self.controller = Controller()
        self.already_warned = [False] * 16

    def _process_event(self, vm, e: Event) -> None:
        """Run one event; events whose vector is 0 are ignored."""
        if e.vector == 0:
            return
        if e.data is not None:
            vm.dev[e.data.addr] = e.data.value
        vm.run(self, e.vector)
        if e.data is not None and e.data.clear:
            vm.dev[e.data.addr] = 0

    def redraw(self, vm) -> None:
        """Call the screen vector; meant to be called at 60 Hz."""
        self._process_event(vm, self.screen.update(vm))

    def init_args(self, vm, args: Sequence[str]) -> None:
        """Set the initial console type from whether arguments exist."""
        self.console.set_has_args(vm, bool(args))

    def output(self, vm) -> Output:
        """Collect the current output; the accumulated streams are emptied."""
        return Output(
            size=self.screen.size(),
            frame=self.screen.frame(vm),
            hide_mouse=self.mouse.is_active(),
            stdout=self.console.stdout(),
            stderr=self.console.stderr(),
            exit=self.system.exit(),
        )

    def send_args(self, vm, args: Sequence[str]) -> Output:
        """Deliver ``args`` through the console, then switch it to stdin."""
        for i, arg in enumerate(args):
            self.console.set_type(vm, ConsoleType.ARGUMENT)
            for c in arg.encode():
                self._process_event(vm, self.console.update(vm, c))
            last = i == len(args) - 1
            self.console.set_type(
                vm, ConsoleType.ARGUMENT_END if last else ConsoleType.ARGUMENT_SPACER
            )
            self._process_event(vm, self.console.update(vm, ord("\n")))
        self.console.set_type(vm, ConsoleType.STDIN)
        return self.output(vm)

    def char(self, vm, k: int) -> None:
        """Send a character through the controller."""
        self._process_event(vm, self.controller.char(vm, k))

    def pressed(self, vm, k: Key | CharKey, repeat: bool) -> None:
        """Press a key on the controller."""
        e = self.controller.pressed(vm, k, repeat)
        if e is not None:
            self._process_event(vm, e)

    def released(self, vm, k: Key | CharKey) -> None:
        """Release a key on the controller."""
        e = self.controller.released(vm, k)
        if e is not None:
            self._process_event(vm, e)

    def console_input(self, vm, c: int) -> None:
        """Send a character through the console."""
        self._process_event(vm, self.console.update(vm, c))

    def mouse_input(self, vm, m: MouseState) -> None:
        """Apply a new mouse state."""
        e = self.mouse.update(vm, m)
        if e is not None:
            self._process_event(vm, e)

    def process_audio(self, vm) -> None:
        """Call the vector of every voice whose note has finished."""
        for i in range(AUDIO_DEV_COUNT):
            e = self.audio.update(vm, i)
            if e is not None:
                self._process_event(vm, e)

    def audio_streams(self) -> tuple[StreamData, ...]:
        """Return the shared state of all audio voices."""
        return tuple(self.audio.stream(i) for i in range(AUDIO_DEV_COUNT))

    def audio_set_muted(self, m: bool) -> None:
        """Set the global audio mute flag."""
        self.audio.set_muted(m)
import logging
from datetime import datetime

from varvara.clock import Datetime
from varvara.controller import CharKey, Key
from varvara.mouse import MouseState
from varvara.varvara import Varvara


class FakeStack:
    def __init__(self):
        self.data = []

    def __len__(self):
        return len(self.data)

    def set_len(self, n):
        self.data = (self.data + [0] * n)[:n]

    def peek_byte_at(self, i):
        return self.data[-1 - i] if i < len(self.data) else 0


class FakeVM:
    def __init__(self):
        self.dev = bytearray(256)
        self.ram = bytearray(0x10000)
        self.stack = FakeStack()
        self.ret = FakeStack()
        self.handlers = {}
        self.calls = []

    def run(self, device, vector):
        self.calls.append(vector)
        handler = self.handlers.get(vector)
        if handler is not None:
            handler(self, device)
        return vector

    def out(self, device, port, value):
        self.dev[port] = value
        return device.deo(self, port)

    def set_u16(self, port, value):
        self.dev[port] = value >> 8
        self.dev[port + 1] = value & 0xFF

    def get_u16(self, port):
        return (self.dev[port] << 8) | self.dev[port + 1]


def test_console_write_is_collected_in_output():
    vm, dev = FakeVM(), Varvara()
    for c in b"hi":
        assert vm.out(dev, 0x18, c) is True
    out = dev.output(vm)
    assert out.stdout == b"hi"
    assert out.stderr == b""
    assert dev.output(vm).stdout == b""


def test_console_error_port():
    vm, dev = FakeVM(), Varvara()
    vm.out(dev, 0x19, ord("!"))
    assert dev.output(vm).stderr == b"!"


def test_system_state_requests_exit():
    vm, dev = FakeVM(), Varvara()
    assert vm.out(dev, 0x0F, 0x85) is False
    out = dev.output(vm)
    assert out.exit == 5
    assert dev.output(vm).exit is None


def test_unknown_device_warns_once(caplog):
    vm, dev = FakeVM(), Varvara()
    with caplog.at_level(logging.WARNING):
        vm.out(dev, 0xE3, 1)
        vm.out(dev, 0xE4, 1)
    assert dev.already_warned[0xE] is True
    assert sum("unimplemented device" in r.message for r in caplog.records) == 1


def test_mouse_port_marks_active():
    vm, dev = FakeVM(), Varvara()
    assert dev.output(vm).hide_mouse is False
    dev.dei(vm, 0x92)
    assert dev.output(vm).hide_mouse is True


def test_screen_size_ports():
    vm, dev = FakeVM(), Varvara()
    dev.dei(vm, 0x22)
    assert vm.get_u16(0x22) == 512
    vm.set_u16(0x22, 0x0100)
    dev.deo(vm, 0x23)
    assert dev.output(vm).size == (256, 320)


def test_datetime_port_through_machine():
    vm, dev = FakeVM(), Varvara()
    dev.datetime = Datetime(clock=lambda: datetime(2024, 3, 5, 10, 20, 30))
    dev.dei(vm, 0xC0)
    dev.dei(vm, 0xC2)
    assert vm.get_u16(0xC0) == 2024
    assert vm.dev[0xC2] == 3


def test_redraw_calls_screen_vector():
    vm, dev = FakeVM(), Varvara()
    dev.redraw(vm)
    assert vm.calls == []
    vm.set_u16(0x20, 0x0123)
    dev.redraw(vm)
    assert vm.calls == [0x0123]


def test_char_sets_and_clears_key_port():
    vm, dev = FakeVM(), Varvara()
    vm.set_u16(0x80, 0x0200)
    seen = []
    vm.handlers[0x0200] = lambda v, d: seen.append(v.dev[0x83])
    dev.char(vm, ord("a"))
    assert seen == [ord("a")]
    assert vm.dev[0x83] == 0


def test_console_input_keeps_read_port():
    vm, dev = FakeVM(), Varvara()
    vm.set_u16(0x10, 0x0300)
    dev.console_input(vm, ord("x"))
    assert vm.calls == [0x0300]
    assert vm.dev[0x12] == ord("x")


def test_send_args_delivers_types_and_bytes():
    vm, dev = FakeVM(), Varvara()
    vm.set_u16(0x10, 0x0300)
    seen = []
    vm.handlers[0x0300] = lambda v, d: seen.append((v.dev[0x17], chr(v.dev[0x12])))
    dev.send_args(vm, ["ab", "c"])
    assert seen == [(2, "a"), (2, "b"), (3, "\n"), (2, "c"), (4, "\n")]
    assert vm.dev[0x17] == 1


def test_init_args():
    vm, dev = FakeVM(), Varvara()
    dev.init_args(vm, [])
    assert vm.dev[0x17] == 0
    dev.init_args(vm, ["x"])
    assert vm.dev[0x17] == 1


def test_pressed_and_released_update_buttons():
    vm, dev = FakeVM(), Varvara()
    vm.set_u16(0x80, 0x0400)
    dev.pressed(vm, Key.RIGHT, False)
    assert vm.dev[0x82] == 0x80
    dev.pressed(vm, Key.RIGHT, False)
    assert vm.calls == [0x0400]
    dev.released(vm, Key.RIGHT)
    assert vm.dev[0x82] == 0
    assert vm.calls == [0x0400, 0x0400]


def test_pressed_char_key_sends_character():
    vm, dev = FakeVM(), Varvara()
    vm.set_u16(0x80, 0x0400)
    seen = []
    vm.handlers[0x0400] = lambda v, d: seen.append(v.dev[0x83])
    dev.pressed(vm, CharKey(ord("q")), False)
    dev.released(vm, CharKey(ord("q")))
    assert seen == [ord("q")]


def test_mouse_input_sets_position():
    vm, dev = FakeVM(), Varvara()
    vm.set_u16(0x90, 0x0500)
    dev.mouse_input(vm, MouseState(pos=(12.0, 34.0), buttons=1))
    assert vm.get_u16(0x92) == 12
    assert vm.get_u16(0x94) == 34
    assert vm.dev[0x96] == 1
    assert vm.calls == [0x0500]


def test_process_audio_fires_finished_voices():
    vm, dev = FakeVM(), Varvara()
    vm.set_u16(0x50, 0x0600)
    dev.audio_streams()[2].done = True
    dev.process_audio(vm)
    assert vm.calls == [0x0600]
    dev.process_audio(vm)
    assert vm.calls == [0x0600]


def test_audio_set_muted():
    dev = Varvara()
    streams = dev.audio_streams()
    assert len(streams) == 4
    dev.audio_set_muted(True)
    assert all(s.muted.is_set() for s in streams)
    dev.audio_set_muted(False)
    assert not any(s.muted.is_set() for s in streams)


def test_file_write_through_machine(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    vm, dev = FakeVM(), Varvara()
    vm.ram[0x200:0x208] = b"out.txt\0"
    vm.ram[0x300:0x303] = b"abc"
    vm.set_u16(0xA8, 0x0200)
    vm.set_u16(0xAA, 3)
    vm.set_u16(0xAE, 0x0300)
    dev.deo(vm, 0xAF)
    assert vm.get_u16(0xA2) == 3
    dev.file = None
    assert (tmp_path / "out.txt").read_bytes() == b"abc"


def test_reset_loads_expansion_and_clears_state():
    vm, dev = FakeVM(), Varvara()
    vm.out(dev, 0x0F, 0x01)
    vm.out(dev, 0xE0, 1)
    dev.reset(b"\x01\x02\x03")
    assert bytes(dev.system.banks[0][:4]) == b"\x01\x02\x03\x00"
    assert dev.system.should_exit() is False
    assert dev.already_warned == [False] * 16


def test_snapshot_style_session():
    vm, dev = FakeVM(), Varvara()
    frames = []

    def init(v, d):
        v.set_u16(0x08, 0x0F00)
        v.set_u16(0x0A, 0x0000)
        v.set_u16(0x0C, 0x0000)
        v.set_u16(0x28, 0)
        v.set_u16(0x2A, 0)
        v.out(d, 0x2E, 0x41)
        v.set_u16(0x20, 0x0700)

    vm.handlers[0x100] = init
    vm.handlers[0x0700] = lambda v, d: frames.append(1)
    dev.reset(b"")
    vm.run(dev, 0x100)
    out = dev.output(vm)
    size = out.size
    assert size == (512, 320)

    dev.mouse_input(vm, MouseState(pos=(size[0] / 2, size[1] / 2), buttons=1))
    dev.pressed(vm, Key.RIGHT, False)
    dev.pressed(vm, CharKey(ord("a")), False)
    for _ in range(60):
        dev.redraw(vm)
    assert len(frames) == 60

    out = dev.output(vm)
    assert out.frame[0:4] == bytes([0x00, 0x00, 0xFF, 0xFF])
    assert out.frame[4:8] == bytes([0x00, 0x00, 0x00, 0xFF])
    assert out.stdout == b""
    assert out.exit is None
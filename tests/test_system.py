import struct

import pytest

from varvara.system import BANK_COUNT, BANK_SIZE, System, palette_color


class FakeStack:
    def __init__(self, n=0):
        self.n = n

    def __len__(self):
        return self.n

    def set_len(self, n):
        self.n = n

    def peek_byte_at(self, i):
        return i


class FakeVM:
    def __init__(self):
        self.dev = bytearray(256)
        self.ram = bytearray(0x10000)
        self.stack = FakeStack()
        self.ret = FakeStack()


def _run_expansion(system, vm, command, at=0x0200):
    vm.ram[at:at + len(command)] = command
    vm.dev[2:4] = struct.pack(">H", at)
    system.deo(vm, 0x03)


def _fill(length, bank, addr, value):
    return bytes([0]) + struct.pack(">HHHB", length, bank, addr, value)


def _copy(op, length, src_bank, src, dst_bank, dst):
    return bytes([op]) + struct.pack(">HHHHH", length, src_bank, src, dst_bank, dst)


def test_fill_ram():
    system, vm = System(), FakeVM()
    _run_expansion(system, vm, _fill(3, 0, 0x300, 0xAB))
    assert vm.ram[0x300:0x303] == b"\xab" * 3
    assert vm.ram[0x303] == 0
    assert vm.ram[0x2FF] == 0


def test_fill_bank():
    system, vm = System(), FakeVM()
    _run_expansion(system, vm, _fill(4, 2, 0x10, 0x55))
    assert system.banks[1][0x10:0x14] == b"\x55" * 4
    assert not any(system.banks[0])


def test_fill_bank_out_of_range():
    system, vm = System(), FakeVM()
    with pytest.raises(IndexError):
        _run_expansion(system, vm, _fill(1, BANK_COUNT + 1, 0, 1))
    assert all(not any(bank) for bank in system.banks)
    assert vm.ram[0] == 0


def test_copy_ram_to_bank_and_back():
    system, vm = System(), FakeVM()
    vm.ram[0x400:0x404] = b"data"
    _run_expansion(system, vm, _copy(1, 4, 0, 0x400, 1, 0x20))
    assert system.banks[0][0x20:0x24] == b"data"
    _run_expansion(system, vm, _copy(1, 4, 1, 0x20, 0, 0x500))
    assert vm.ram[0x500:0x504] == b"data"


def test_copy_right_handles_overlap():
    system, vm = System(), FakeVM()
    vm.ram[0x300:0x304] = b"abcd"
    _run_expansion(system, vm, _copy(2, 4, 0, 0x300, 0, 0x301))
    assert vm.ram[0x301:0x305] == b"abcd"


def test_copy_left_propagates_on_forward_overlap():
    system, vm = System(), FakeVM()
    vm.ram[0x300:0x304] = b"abcd"
    _run_expansion(system, vm, _copy(1, 4, 0, 0x300, 0, 0x301))
    assert vm.ram[0x300:0x305] == b"aaaaa"


def test_invalid_opcode_leaves_memory(caplog):
    system, vm = System(), FakeVM()
    vm.dev[2:4] = struct.pack(">H", 0x200)
    vm.ram[0x200] = 9
    before = bytes(vm.ram)
    system.deo(vm, 0x03)
    assert bytes(vm.ram) == before
    assert "invalid expansion opcode" in caplog.text


def test_reset_spreads_over_banks():
    system = System()
    system.banks[2][5] = 1
    mem = bytes([7]) * (BANK_SIZE + 3)
    system.reset(mem)
    assert all(b == 7 for b in system.banks[0])
    assert system.banks[1][:3] == b"\x07" * 3
    assert system.banks[1][3] == 0
    assert system.banks[2][5] == 0
    assert all(len(bank) == BANK_SIZE for bank in system.banks)


def test_state_requests_exit():
    system, vm = System(), FakeVM()
    vm.dev[0x0F] = 0x81
    system.deo(vm, 0x0F)
    assert system.should_exit()
    assert system.exit() == 1
    assert system.exit() is None
    assert not system.should_exit()


def test_zero_state_does_not_exit():
    system, vm = System(), FakeVM()
    system.deo(vm, 0x0F)
    assert system.should_exit() is False


def test_reset_clears_exit():
    system, vm = System(), FakeVM()
    vm.dev[0x0F] = 0x02
    system.deo(vm, 0x0F)
    system.reset(b"")
    assert system.exit() is None


def test_stack_length_ports():
    system, vm = System(), FakeVM()
    vm.dev[0x04] = 5
    system.deo(vm, 0x04)
    assert len(vm.stack) == 5
    vm.dev[0x05] = 2
    system.deo(vm, 0x05)
    assert len(vm.ret) == 2
    vm.dev[0x04] = 0
    system.dei(vm, 0x04)
    assert vm.dev[0x04] == 5


def test_debug_prints_both_stacks(capsys):
    system, vm = System(), FakeVM()
    vm.stack.set_len(2)
    system.deo(vm, 0x0E)
    lines = capsys.readouterr().out.splitlines()
    assert [line[:4] for line in lines] == ["WST ", "RST "]
    assert all(line.endswith("<") for line in lines)
    assert lines[0].count("|") == 1
    assert "02|" in lines[0]


def test_palette_color():
    vm = FakeVM()
    vm.dev[0x08:0x0A] = struct.pack(">H", 0xF000)
    assert palette_color(vm, 0) == 0xFFFF0000
    assert palette_color(vm, 1) == 0xFF000000
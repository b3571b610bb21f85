"""The screen device: a two-layer framebuffer with pixel and sprite drawing."""

from __future__ import annotations

from varvara.events import Event
from varvara.system import palette_color

PORT_BASE = 0x20

_VECTOR = PORT_BASE
_WIDTH = PORT_BASE | 0x02
_HEIGHT = PORT_BASE | 0x04
_AUTO = PORT_BASE | 0x06
_X = PORT_BASE | 0x08
_Y = PORT_BASE | 0x0A
_ADDR = PORT_BASE | 0x0C
_PIXEL = PORT_BASE | 0x0E
_SPRITE = PORT_BASE | 0x0F

# Reads refresh on the first byte of a port; writes act on the second.
WIDTH_R = _WIDTH
WIDTH_W = _WIDTH + 1
HEIGHT_R = _HEIGHT
HEIGHT_W = _HEIGHT + 1

DEFAULT_WIDTH = 512
DEFAULT_HEIGHT = 320

_BLENDING = (
    (0, 0, 0, 0, 1, 0, 1, 1, 2, 2, 0, 2, 3, 3, 3, 0),
    (0, 1, 2, 3, 0, 1, 2, 3, 0, 1, 2, 3, 0, 1, 2, 3),
    (1, 2, 3, 1, 1, 2, 3, 1, 1, 2, 3, 1, 1, 2, 3, 1),
    (2, 3, 1, 2, 2, 3, 1, 2, 2, 3, 1, 2, 2, 3, 1, 2),
)
_OPAQUE = (
    False, True, True, True, True, False, True, True,
    True, True, False, True, True, True, True, False,
)

_FLAG_FILL = 0x80
_FLAG_2BPP = 0x80
_FLAG_FG = 0x40
_FLAG_FLIP_Y = 0x20
_FLAG_FLIP_X = 0x10

_AUTO_X = 0x01
_AUTO_Y = 0x02
_AUTO_ADDR = 0x04


def _get_u16(dev, addr: int) -> int:
    return (dev[addr] << 8) | dev[addr + 1]


def _set_u16(dev, addr: int, value: int) -> None:
    value &= 0xFFFF
    dev[addr] = value >> 8
    dev[addr + 1] = value & 0xFF


def _resize_buffer(buf: bytearray, size: int) -> None:
    if len(buf) > size:
        del buf[size:]
    else:
        buf.extend(bytes(size - len(buf)))


class Screen:
    """Framebuffer with foreground and background layers, rendered to BGRA."""

    def __init__(self) -> None:
        self._width = DEFAULT_WIDTH
        self._height = DEFAULT_HEIGHT
        size = DEFAULT_WIDTH * DEFAULT_WIDTH
        self._fg = bytearray(size)
        self._bg = bytearray(size)
        self._buffer = bytearray(size * 4)
        self._changed = True
        self._colors: tuple[int, ...] = (0, 0, 0, 0)

    def _resize(self, width: int, height: int) -> None:
        if (width, height) == (self._width, self._height):
            return
        self._width, self._height = width, height
        size = width * height
        _resize_buffer(self._fg, size)
        _resize_buffer(self._bg, size)
        _resize_buffer(self._buffer, size * 4)

    def size(self) -> tuple[int, int]:
        """Return the current ``(width, height)``."""
        return self._width, self._height

    def frame(self, vm) -> bytes:
        """Return the rendered frame as little-endian 0xAARRGGBB pixels."""
        previous = self._colors
        self._colors = tuple(palette_color(vm, i) for i in range(4))
        if previous != self._colors:
            self._changed = True

        if self._changed:
            self._changed = False
            index = bytes(f if f else b for f, b in zip(self._fg, self._bg))
            count = min(len(index), len(self._buffer) // 4)
            index = index[:count]
            for channel in range(4):
                shift = 8 * channel
                table = bytes(
                    (self._colors[v & 0b11] >> shift) & 0xFF for v in range(256)
                )
                self._buffer[channel:count * 4:4] = index.translate(table)
        return bytes(self._buffer)

    def _set_pixel(self, foreground: bool, x: int, y: int, color: int) -> None:
        if x >= self._width or y >= self._height:
            return
        layer = self._fg if foreground else self._bg
        i = x + y * self._width
        if i < len(layer):
            layer[i] = color

    def _pixel(self, vm) -> None:
        dev = vm.dev
        p = dev[_PIXEL]
        auto = dev[_AUTO]
        x = _get_u16(dev, _X)
        y = _get_u16(dev, _Y)
        color = p & 0b11
        foreground = bool(p & _FLAG_FG)

        if p & _FLAG_FILL:
            x0, x1 = (0, x) if p & _FLAG_FLIP_X else (x, self._width)
            y0, y1 = (0, y) if p & _FLAG_FLIP_Y else (y, self._height)
            x1 = min(x1, self._width)
            y1 = min(y1, self._height)
            if x0 >= x1:
                return
            layer = self._fg if foreground else self._bg
            run = bytes([color]) * (x1 - x0)
            for row in range(y0, y1):
                start = row * self._width + x0
                end = min(start + len(run), len(layer))
                if start < end:
                    layer[start:end] = run[:end - start]
        else:
            self._set_pixel(foreground, x, y, color)
            if auto & _AUTO_X:
                _set_u16(dev, _X, x + 1)
            if auto & _AUTO_Y:
                _set_u16(dev, _Y, y + 1)

    def _sprite(self, vm) -> None:
        dev = vm.dev
        ram = vm.ram
        s = dev[_SPRITE]
        auto = dev[_AUTO]
        color = s & 0x0F
        two_bpp = bool(s & _FLAG_2BPP)
        foreground = bool(s & _FLAG_FG)
        flip_y = bool(s & _FLAG_FLIP_Y)
        flip_x = bool(s & _FLAG_FLIP_X)
        opaque = _OPAQUE[color]

        # Position handling mirrors the reference machine's observable
        # behaviour, including the swapped use of the auto-x/auto-y flags.
        x = _get_u16(dev, _X)
        y = _get_u16(dev, _Y)
        for _ in range((auto >> 4) + 1):
            addr = _get_u16(dev, _ADDR)
            for dy in range(8):
                lo = ram[addr]
                hi = ram[(addr + 8) & 0xFFFF] if two_bpp else 0
                addr = (addr + 1) & 0xFFFF

                py = (y + (7 - dy if flip_y else dy)) & 0xFFFF
                if py >= self._height:
                    continue
                for dx in range(8):
                    px = (x + (7 - dx if flip_x else dx)) & 0xFFFF
                    if px >= self._width:
                        continue
                    shift = 7 - dx
                    data = ((lo >> shift) & 1) | (((hi >> shift) & 1) << 1)
                    if data or opaque:
                        self._set_pixel(foreground, px, py, _BLENDING[data][color])

            if auto & _AUTO_Y:
                x = (x - 8 if flip_x else x + 8) & 0xFFFF
            if auto & _AUTO_X:
                y = (y - 8 if flip_y else y + 8) & 0xFFFF
            if auto & _AUTO_ADDR:
                _set_u16(dev, _ADDR, addr + 8 if two_bpp else addr)

        if auto & _AUTO_X:
            old = _get_u16(dev, _X)
            _set_u16(dev, _X, old - 8 if flip_x else old + 8)
        if auto & _AUTO_Y:
            old = _get_u16(dev, _Y)
            _set_u16(dev, _Y, old - 8 if flip_y else old + 8)

    def deo(self, vm, target: int) -> None:
        """Handle a write to a screen port."""
        self._changed = True
        if target == WIDTH_W:
            self._resize(_get_u16(vm.dev, _WIDTH), self._height)
        elif target == HEIGHT_W:
            self._resize(self._width, _get_u16(vm.dev, _HEIGHT))
        elif target == _PIXEL:
            self._pixel(vm)
        elif target == _SPRITE:
            self._sprite(vm)

    def dei(self, vm, target: int) -> None:
        """Refresh the width or height port before it is read."""
        if target == WIDTH_R:
            _set_u16(vm.dev, _WIDTH, self._width)
        elif target == HEIGHT_R:
            _set_u16(vm.dev, _HEIGHT, self._height)

    def update(self, vm) -> Event:
        """Return the screen vector event, fired once per frame."""
        return Event(vector=_get_u16(vm.dev, _VECTOR))
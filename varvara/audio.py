"""The audio device: four sample-playback voices with ADSR envelopes."""

from __future__ import annotations

import math
import struct
import threading
from collections import deque
from collections.abc import MutableSequence
from dataclasses import dataclass
from enum import Enum

from varvara.events import Event

PORT_BASE = 0x30
DEV_SIZE = 0x10

#: Number of audio devices
DEV_COUNT = 4

#: Expected audio sample rate
SAMPLE_RATE = 44100

#: Expected number of interleaved output channels
CHANNELS = 2

#: Number of samples used to crossfade from the previous note
CROSSFADE_COUNT = 200

MIDDLE_C = 261.6

# Offsets within one audio device's 16 ports.
_POSITION_H = 0x02
_POSITION_L = 0x03
_OUTPUT = 0x04
_PITCH = 0x0F

_PORT_LAYOUT = struct.Struct(">HHBHxHHHBB")

TUNING = (
    0.00058853, 0.00062352, 0.00066060, 0.00069988, 0.00074150, 0.00078559,
    0.00083230, 0.00088179, 0.00093423, 0.00098978, 0.00104863, 0.00111099,
    0.00117705, 0.00124704, 0.00132120, 0.00139976, 0.00148299, 0.00157118,
    0.00166460, 0.00176359, 0.00186845, 0.00197956, 0.00209727, 0.00222198,
    0.00235410, 0.00249409, 0.00264239, 0.00279952, 0.00296599, 0.00314235,
    0.00332921, 0.00352717, 0.00373691, 0.00395912, 0.00419454, 0.00444396,
    0.00470821, 0.00498817, 0.00528479, 0.00559904, 0.00593197, 0.00628471,
    0.00665841, 0.00705434, 0.00747382, 0.00791823, 0.00838908, 0.00888792,
    0.00941642, 0.00997635, 0.01056957, 0.01119807, 0.01186395, 0.01256941,
    0.01331683, 0.01410869, 0.01494763, 0.01583647, 0.01677815, 0.01777583,
    0.01883284, 0.01995270, 0.02113915, 0.02239615, 0.02372789, 0.02513882,
    0.02663366, 0.02821738, 0.02989527, 0.03167293, 0.03355631, 0.03555167,
    0.03766568, 0.03990540, 0.04227830, 0.04479229, 0.04745578, 0.05027765,
    0.05326731, 0.05643475, 0.05979054, 0.06334587, 0.06711261, 0.07110333,
    0.07533136, 0.07981079, 0.08455659, 0.08958459, 0.09491156, 0.10055530,
    0.10653463, 0.11286951, 0.11958108, 0.12669174, 0.13422522, 0.14220667,
    0.15066272, 0.15962159, 0.16911318, 0.17916918, 0.18982313, 0.20111060,
    0.21306926, 0.22573902, 0.23916216, 0.25338348, 0.26845044, 0.28441334,
    0.30132544,
)


def audio_ports_match(t: int) -> bool:
    """Return True if the port address ``t`` belongs to an audio device."""
    return PORT_BASE <= t < PORT_BASE + DEV_SIZE * DEV_COUNT


def _saturate(v: float, limit: int) -> int:
    """Truncate a float to an integer in ``0..=limit``; NaN becomes 0."""
    if math.isnan(v) or v <= 0:
        return 0
    return int(min(v, float(limit)))


def _fmod(a: float, b: float) -> float:
    return math.nan if b == 0 or math.isinf(a) else math.fmod(a, b)


@dataclass(frozen=True)
class Envelope:
    """Decoder for the 16-bit ``adsr`` port."""

    value: int = 0

    def attack(self) -> float | None:
        """Per-sample volume increase during attack, or None if there is none."""
        a = (self.value >> 12) & 0xF
        if not a:
            return None
        return 1000.0 / (a * 64.0 * SAMPLE_RATE)

    def decay(self) -> float:
        """Per-sample volume decrease during decay."""
        d = max(((self.value >> 8) & 0xF) * 64.0, 10.0)
        return 1000.0 / (d * SAMPLE_RATE)

    def sustain(self) -> float:
        """Sustain level as a fraction."""
        return ((self.value >> 4) & 0xF) / 16.0

    def release(self) -> float:
        """Per-sample volume decrease during release."""
        r = (self.value & 0xF) * 64.0
        return math.inf if r == 0 else 1000.0 / (r * SAMPLE_RATE)

    def disabled(self) -> bool:
        """Return True if the whole envelope is zero."""
        return self.value == 0


def _note(pitch: int) -> int:
    return max(pitch & 0x7F, 20) - 20


@dataclass(frozen=True)
class _AudioPorts:
    vector: int
    position: int
    output: int
    duration_port: int
    adsr: Envelope
    length: int
    addr: int
    volume: int
    pitch: int

    @classmethod
    def read(cls, vm, i: int) -> _AudioPorts:
        base = PORT_BASE + i * DEV_SIZE
        fields = _PORT_LAYOUT.unpack(bytes(vm.dev[base:base + DEV_SIZE]))
        vector, position, output, duration, adsr, length, addr, volume, pitch = fields
        return cls(vector, position, output, duration, Envelope(adsr),
                   length, addr, volume, pitch)

    @property
    def left(self) -> float:
        return ((self.volume >> 4) & 0xF) / 15.0

    @property
    def right(self) -> float:
        return (self.volume & 0xF) / 15.0

    @property
    def loop_sample(self) -> bool:
        return (self.pitch >> 7) == 0

    @property
    def note(self) -> int:
        return _note(self.pitch)

    def duration(self) -> float:
        """Note duration in milliseconds, derived from the sample when unset."""
        if self.duration_port > 0:
            return float(self.duration_port)
        scale = TUNING[self.note] / TUNING[0x28]
        return self.length / (scale * 44.1)


class Stage(Enum):
    """Envelope stage of a playing note."""

    ATTACK = "attack"
    DECAY = "decay"
    SUSTAIN = "sustain"
    RELEASE = "release"


class StreamData:
    """State of one voice, shared between the VM and the audio thread.

    Hold ``lock`` while calling :meth:`fill` from another thread.
    """

    def __init__(self, muted: threading.Event) -> None:
        self.lock = threading.Lock()
        self.muted = muted
        self.clear()

    def clear(self) -> None:
        """Return to the silent initial state."""
        self.samples = b""
        self.loop_sample = False
        self.crossfade: deque[float] = deque()
        self.pos = 0.0
        self.megapos = 0.0
        self.inc = 0.0
        self.duration = 0.0
        self.stage = Stage.ATTACK
        self.attack_rate = 0.0
        self.vol = 0.0
        self.left = 0.0
        self.right = 0.0
        self.envelope = Envelope(0)
        self.done = False

    def _sample(self, f: float) -> float:
        i = _saturate(f, 2**63)
        return float(self.samples[i]) if i < len(self.samples) else 0.0

    def _advance_envelope(self) -> None:
        env = self.envelope
        if self.stage is Stage.ATTACK:
            self.vol += self.attack_rate
            if self.vol >= 1.0:
                self.stage = Stage.DECAY
                self.vol = 1.0
        elif self.stage is Stage.DECAY:
            self.vol -= env.decay()
            if self.vol < 0.0 or self.vol <= env.sustain():
                self.stage = Stage.SUSTAIN
                self.vol = env.sustain()
        elif self.stage is Stage.SUSTAIN:
            self.vol = env.sustain()
        else:
            release = env.release()
            self.vol = 0.0 if self.vol <= 0.0 or release <= 0.0 else self.vol - release

    def fill(self, data: MutableSequence[float]) -> MutableSequence[float]:
        """Fill ``data`` with interleaved stereo samples in place and return it."""
        self.duration -= (len(data) // 2) / SAMPLE_RATE * 1000.0
        if self.duration <= 0.0:
            self.done = True
        muted = self.muted.is_set()

        for i in range(0, len(data), CHANNELS):
            wrap = float(len(self.samples))
            valid = True
            if self.pos >= wrap:
                if self.loop_sample:
                    self.pos = _fmod(self.pos, wrap)
                else:
                    valid = False

            d = 0.0
            if valid:
                lo = self._sample(math.floor(self.pos) if math.isfinite(self.pos) else self.pos)
                ceil = math.ceil(self.pos) if math.isfinite(self.pos) else self.pos
                hi = self._sample(_fmod(ceil, wrap))
                frac = _fmod(self.pos, 1.0)
                d = (hi * frac + lo * (1.0 - frac)) * self.vol
                d = d if d < 255.0 else 255.0
                d = (d - 128.0) / 512.0
            if muted:
                d = 0.0

            data[i] = d * self.left
            data[i + 1] = d * self.right

            if self.crossfade:
                x = len(self.crossfade) / (CROSSFADE_COUNT - 1.0)
                for j in range(CHANNELS):
                    v = self.crossfade.popleft()
                    data[i + j] = v * x + data[i + j] * (1.0 - x)

            self.pos += self.inc
            self.megapos += self.inc
            self._advance_envelope()
        return data


class Audio:
    """The four audio voices and the global mute flag."""

    def __init__(self) -> None:
        self._muted = threading.Event()
        self._streams = [StreamData(self._muted) for _ in range(DEV_COUNT)]

    def set_muted(self, m: bool) -> None:
        """Set the global mute flag."""
        if m:
            self._muted.set()
        else:
            self._muted.clear()

    def reset(self) -> None:
        """Silence every voice, keeping the same stream objects."""
        for s in self._streams:
            with s.lock:
                s.clear()

    def update(self, vm, i: int) -> Event | None:
        """Return the voice's vector event if its note has finished."""
        s = self._streams[i]
        with s.lock:
            if not s.done:
                return None
            s.done = False
        return Event(vector=_AudioPorts.read(vm, i).vector)

    @staticmethod
    def _decode_target(target: int) -> tuple[int, int]:
        return (target - PORT_BASE) // DEV_SIZE, target & 0xF

    def deo(self, vm, target: int) -> None:
        """Handle a write to an audio port; writing pitch starts or releases a note."""
        i, port = self._decode_target(target)
        if port != _PITCH:
            return
        p = _AudioPorts.read(vm, i)
        s = self._streams[i]
        if p.pitch == 0:
            with s.lock:
                s.stage = Stage.RELEASE
                s.duration = p.duration()
            return

        sample_rate = float(p.length) if p.length <= 256 else SAMPLE_RATE / MIDDLE_C
        with s.lock:
            # Render the tail of the previous note for a smooth transition.
            s.crossfade = deque()
            tail = s.fill([0.0] * CROSSFADE_COUNT)

            ram = vm.ram
            samples = bytes(ram[(p.addr + k) & 0xFFFF] for k in range(p.length))
            attack = p.adsr.attack()

            s.samples = samples
            s.crossfade = deque(tail)
            s.loop_sample = p.loop_sample
            s.pos = 0.0
            s.megapos = 0.0
            s.inc = TUNING[p.note] * sample_rate
            s.duration = p.duration()
            s.done = False
            s.vol = 0.0 if p.adsr.disabled() or attack is not None else 1.0
            s.left = p.left
            s.right = p.right
            s.envelope = p.adsr
            if attack is not None:
                s.stage = Stage.ATTACK
                s.attack_rate = attack
            else:
                s.stage = Stage.DECAY
                s.attack_rate = 0.0

    def dei(self, vm, target: int) -> None:
        """Refresh the position or output port before it is read."""
        i, port = self._decode_target(target)
        base = PORT_BASE + i * DEV_SIZE
        s = self._streams[i]
        if port == _POSITION_H:
            with s.lock:
                pos = _saturate(s.pos, 0xFFFF)
            vm.dev[base + _POSITION_H] = pos >> 8
            vm.dev[base + _POSITION_L] = pos & 0xFF
        elif port == _OUTPUT:
            with s.lock:
                vm.dev[base + _OUTPUT] = _saturate(s.vol * 255.0, 0xFF)

    def stream(self, i: int) -> StreamData:
        """Return the shared stream state of voice ``i``."""
        return self._streams[i]
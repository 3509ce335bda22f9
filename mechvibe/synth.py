# pyright: reportUnknownMemberType=false

"""
Keystroke synthesis.

One shared render path turns a ``SwitchProfile`` data record into a stereo
buffer:

1. Tone: oscillator (or noise) plus an optional transient crossfaded in near
   the start, then blended with uniform noise.
2. Mechanical strike: for ``transient.kind == "mechanical"`` the tone is
   replaced by a sum of decaying partials, impact noise and paper rustle.
3. Shaping: envelope, volume, one-pole low-pass decay, per-channel gain and
   the optional inter-channel delay.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

import numpy as np

from .audio import CHANNELS, SAMPLE_RATE
from .errors import InvalidParameterError
from .keys import KeyCategory
from .profiles import KeyAdjustment, SwitchProfile
from .waveforms import (
    ENVELOPE_FUNCTIONS,
    OSC_FUNCTIONS,
    FloatArray,
    blend_noise,
    blend_transient,
    bump_transient,
    click_transient,
    decaying_sine,
    lowpass_decay,
    uniform_noise,
)

BufferSource = Literal["synthetic", "sample", "emergency"]

# Mechanical strike decay rates (1/s) and partial ratios
MECH_BODY_DECAY = 10.0
MECH_METAL_DECAY = 15.0
MECH_METAL_RATIO = 3.0
MECH_IMPACT_DECAY = 30.0
MECH_SPRING_DECAY = 8.0
MECH_SPRING_RATIO = 0.5
MECH_SPRING_LEVEL = 0.3
MECH_PAPER_DECAY = 20.0

# Emergency tone
EMERGENCY_ATTACK = 0.001
EMERGENCY_DECAY_END = 0.1
EMERGENCY_SUSTAIN = 0.3
EMERGENCY_RELEASE = 0.1
EMERGENCY_NOISE = 0.1
EMERGENCY_BLEND = (0.8, 0.2)
EMERGENCY_LEFT_GAIN = 0.9
_EMERGENCY_VOICES: dict[KeyCategory, tuple[float, float]] = {
    KeyCategory.SPACEBAR: (80.0, 0.4),
    KeyCategory.ENTER: (180.0, 0.3),
    KeyCategory.BACKSPACE: (120.0, 0.3),
}
_EMERGENCY_DEFAULT = (150.0, 0.3)


@dataclass(frozen=True, slots=True)
class RenderedBuffer:
    """Immutable ``(frames, 2)`` float32 sample block tagged with its origin."""

    profile_id: str
    category: KeyCategory
    sample_rate: int
    samples: FloatArray
    source: BufferSource = "synthetic"

    def __post_init__(self) -> None:
        samples = np.array(self.samples, dtype=np.float32, order="C")
        if samples.ndim != 2 or samples.shape[1] != CHANNELS:
            raise InvalidParameterError(f"expected (frames, 2) samples, got {samples.shape}")
        samples.flags.writeable = False
        object.__setattr__(self, "samples", samples)

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        return self.frame_count / self.sample_rate

    @property
    def nbytes(self) -> int:
        return int(self.samples.nbytes)

    def channel(self, index: int) -> FloatArray:
        return self.samples[:, index]


def frame_count_for(duration: float, sample_rate: int) -> int:
    return int(round(sample_rate * duration))


def _check_rate(sample_rate: float) -> int:
    """Validate ``sample_rate`` and return it as a whole number of frames per second."""
    if (
        isinstance(sample_rate, bool)
        or not isinstance(sample_rate, int | float)
        or not math.isfinite(sample_rate)
        or sample_rate <= 0
        or not float(sample_rate).is_integer()
    ):
        raise InvalidParameterError(
            f"sample_rate must be a positive whole number, got {sample_rate!r}"
        )
    return int(sample_rate)


def _jitter(rng: np.random.Generator, pitch_variation: float) -> float:
    if pitch_variation <= 0:
        return 1.0
    return 1.0 + float(rng.uniform(-1.0, 1.0)) * pitch_variation


def _tone(
    t: FloatArray,
    frequency: float,
    profile: SwitchProfile,
    adjustment: KeyAdjustment,
    noise_amount: float,
    rng: np.random.Generator,
    noise: bool,
) -> FloatArray:
    base = profile.base
    transient = base.transient
    if base.waveform == "noise":
        signal = uniform_noise(rng, t.size) if noise else np.zeros_like(t)
    else:
        signal = OSC_FUNCTIONS[base.waveform](frequency, t)

    intensity = adjustment.transient_intensity
    match transient.kind:
        case "bump":
            burst = bump_transient(
                t,
                freq=transient.frequency_hz * intensity,
                duration=transient.duration_s,
                intensity=transient.intensity * intensity,
            )
            signal = blend_transient(
                signal, burst, t, duration=transient.duration_s, blend=transient.blend
            )
        case "click":
            burst = click_transient(
                t,
                freq=transient.frequency_hz * intensity,
                duration=transient.duration_s,
                intensity=transient.intensity * intensity,
                attack=transient.attack_s,
            )
            signal = blend_transient(
                signal, burst, t, duration=transient.duration_s, blend=transient.blend
            )
        case _:
            pass

    grain = uniform_noise(rng, t.size, noise_amount) if noise else np.zeros_like(t)
    weight = base.noise_amount if base.noise_weight == "base" else noise_amount
    return blend_noise(signal, grain, weight)


def _mechanical_strike(
    t: FloatArray,
    frequency: float,
    profile: SwitchProfile,
    adjustment: KeyAdjustment,
    noise_amount: float,
    rng: np.random.Generator,
    noise: bool,
) -> FloatArray:
    transient = profile.base.transient
    mix = transient.mix
    assert mix is not None
    intensity = adjustment.transient_intensity
    body_freq = transient.frequency_hz * intensity

    body = decaying_sine(body_freq, t, MECH_BODY_DECAY) * transient.intensity * intensity
    metal = (
        decaying_sine(body_freq * MECH_METAL_RATIO, t, MECH_METAL_DECAY) * transient.metal_vibration
    )
    spring = decaying_sine(frequency * MECH_SPRING_RATIO, t, MECH_SPRING_DECAY) * MECH_SPRING_LEVEL
    strike = body * mix.mechanical + metal * mix.metal + spring * mix.spring
    if not noise:
        return strike

    impact = uniform_noise(rng, t.size, noise_amount) * np.exp(-t * MECH_IMPACT_DECAY)
    paper_window = (t > mix.paper_start_s) & (t < mix.paper_end_s)
    paper = np.where(
        paper_window,
        uniform_noise(rng, t.size, mix.paper_level)
        * np.exp(-(t - mix.paper_start_s) * MECH_PAPER_DECAY),
        0.0,
    )
    return strike + impact * mix.impact + paper


def render(
    profile: SwitchProfile,
    category: KeyCategory | str = KeyCategory.DEFAULT,
    pitch_variation: float = 0.0,
    sample_rate: int = SAMPLE_RATE,
    *,
    rng: np.random.Generator | None = None,
    noise: bool = True,
    bake_volume: bool = True,
) -> RenderedBuffer:
    """Render one keystroke for ``profile``/``category`` as a stereo buffer.

    Unknown categories fall back to the profile's default adjustment. With
    ``pitch_variation=0`` and ``noise=False`` the output is fully
    deterministic. ``bake_volume=False`` leaves the category's volume
    multiplier for the playback stage to apply.
    """

    sample_rate = _check_rate(sample_rate)
    if not math.isfinite(pitch_variation) or pitch_variation < 0:
        raise InvalidParameterError(f"pitch_variation must be >= 0, got {pitch_variation!r}")
    key = KeyCategory.coerce(category)
    adjustment = profile.adjustment(key)
    duration = adjustment.duration_s
    if not math.isfinite(duration) or duration <= 0:
        raise InvalidParameterError(f"duration must be positive, got {duration!r}")

    generator = rng if rng is not None else np.random.default_rng()
    base = profile.base
    frequency = (
        base.base_frequency_hz * adjustment.frequency_multiplier * _jitter(generator, pitch_variation)
    )
    frame_count = frame_count_for(duration, sample_rate)
    t = np.arange(frame_count, dtype=np.float64) / sample_rate

    envelope = ENVELOPE_FUNCTIONS[base.envelope](
        t,
        attack=base.attack_s,
        decay=base.decay_s,
        sustain=base.sustain,
        release=base.release_s,
        duration=duration,
    )
    volume = adjustment.volume_multiplier if bake_volume else 1.0
    shaping = envelope * volume * lowpass_decay(t, base.filter_cutoff_hz, sample_rate, base.filter_slope)
    noise_amount = profile.noise_for(key)
    voice = _mechanical_strike if base.transient.kind == "mechanical" else _tone

    channels: list[FloatArray] = []
    for index in range(CHANNELS):
        signal = voice(t, frequency, profile, adjustment, noise_amount, generator, noise) * shaping
        gain = np.full_like(t, base.channel_gain[index])
        if base.transient_channel_gain is not None:
            gain = np.where(
                t < base.transient.duration_s, base.transient_channel_gain[index], gain
            )
        channels.append(signal * gain)

    delay = int(sample_rate * base.stereo_delay_s)
    if delay > 0:
        left, right = channels
        delayed = np.concatenate((right[:delay], left[: max(frame_count - delay, 0)]))[:frame_count]
        channels[1] = delayed * base.stereo_delay_gain

    return RenderedBuffer(
        profile_id=profile.id,
        category=key,
        sample_rate=sample_rate,
        samples=np.stack(channels, axis=1),
    )


def emergency_tone(
    profile_id: str,
    category: KeyCategory | str = KeyCategory.DEFAULT,
    sample_rate: int = SAMPLE_RATE,
    *,
    rng: np.random.Generator | None = None,
    noise: bool = True,
) -> RenderedBuffer:
    """Minimal sine-plus-noise tone used when every other source has failed."""

    sample_rate = _check_rate(sample_rate)
    key = KeyCategory.coerce(category)
    frequency, duration = _EMERGENCY_VOICES.get(key, _EMERGENCY_DEFAULT)
    generator = rng if rng is not None else np.random.default_rng()
    frame_count = frame_count_for(duration, sample_rate)
    t = np.arange(frame_count, dtype=np.float64) / sample_rate

    release_start = duration - EMERGENCY_RELEASE
    decay_span = EMERGENCY_DECAY_END - EMERGENCY_ATTACK
    envelope = np.select(
        [t < EMERGENCY_ATTACK, t < EMERGENCY_DECAY_END, t < release_start],
        [
            t / EMERGENCY_ATTACK,
            1 - (t - EMERGENCY_ATTACK) / decay_span * (1 - EMERGENCY_SUSTAIN),
            np.full_like(t, EMERGENCY_SUSTAIN),
        ],
        default=EMERGENCY_SUSTAIN * (1 - (t - release_start) / EMERGENCY_RELEASE),
    )
    tone_weight, noise_weight = EMERGENCY_BLEND
    channels: list[FloatArray] = []
    for index in range(CHANNELS):
        grain = uniform_noise(generator, t.size, EMERGENCY_NOISE) if noise else np.zeros_like(t)
        signal = (OSC_FUNCTIONS["sine"](frequency, t) * tone_weight + grain * noise_weight) * envelope
        if index == 0:
            signal = signal * EMERGENCY_LEFT_GAIN
        channels.append(signal)

    return RenderedBuffer(
        profile_id=profile_id,
        category=key,
        sample_rate=sample_rate,
        samples=np.stack(channels, axis=1),
        source="emergency",
    )

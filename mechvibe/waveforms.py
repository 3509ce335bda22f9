"""
Envelope and waveform primitives.

Every function takes explicit time/frequency inputs and is evaluated over a
whole ``numpy`` time axis at once. ``t`` may be a scalar or an array of
seconds; the result has the same shape.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Callable, TypeAlias

import numpy as np
from numpy.typing import ArrayLike, NDArray

FloatArray: TypeAlias = NDArray[np.float64]
OscFn: TypeAlias = Callable[[float, ArrayLike], FloatArray]
EnvelopeFn: TypeAlias = Callable[..., FloatArray]

# Mechanical envelope modulation (typewriter): wobble depth during decay and
# release, and the slow vibration riding on the sustain plateau.
MECH_DECAY_WOBBLE = 0.2
MECH_SUSTAIN_WOBBLE = 0.1
MECH_SUSTAIN_RATE = 20.0
MECH_RELEASE_WOBBLE = 0.2


def _time(t: ArrayLike) -> FloatArray:
    return np.asarray(t, dtype=np.float64)


# =============================================================================
# OSCILLATORS
# =============================================================================


def sine(freq: float, t: ArrayLike) -> FloatArray:
    return np.sin(2 * np.pi * freq * _time(t))


def triangle(freq: float, t: ArrayLike) -> FloatArray:
    """Triangle wave folded out of a sine via arcsin."""
    return np.arcsin(np.sin(2 * np.pi * freq * _time(t))) * (2 / np.pi)


def sawtooth(freq: float, t: ArrayLike) -> FloatArray:
    phase = _time(t) * freq
    return 2 * (phase - np.floor(phase + 0.5))


def square(freq: float, t: ArrayLike) -> FloatArray:
    return np.sign(np.sin(2 * np.pi * freq * _time(t)))


OSC_FUNCTIONS: Mapping[str, OscFn] = MappingProxyType(
    {
        "sine": sine,
        "triangle": triangle,
        "sawtooth": sawtooth,
        "square": square,
    }
)


def decaying_sine(freq: float, t: ArrayLike, rate: float) -> FloatArray:
    """Sine partial with an exponential amplitude decay of ``rate`` per second."""
    time = _time(t)
    return np.sin(2 * np.pi * freq * time) * np.exp(-time * rate)


# =============================================================================
# ENVELOPES
# =============================================================================


def adsr_envelope(
    t: ArrayLike,
    *,
    attack: float,
    decay: float,
    sustain: float,
    release: float,
    duration: float,
) -> FloatArray:
    """Linear attack, decay to ``sustain``, hold, and linear release.

    The release segment is anchored to the end of the sound
    (``duration - release``) and takes over once the decay has finished, so
    sounds shorter than ``attack + decay + release`` jump into the release
    slope rather than stretching it.
    """
    time = _time(t)
    release_start = duration - release
    with np.errstate(divide="ignore", invalid="ignore"):
        envelope = np.select(
            [time < attack, time < attack + decay, time < release_start],
            [
                time / attack,
                1 - (time - attack) / decay * (1 - sustain),
                np.full_like(time, sustain),
            ],
            default=sustain * (1 - (time - release_start) / release),
        )
    return envelope


def mechanical_envelope(
    t: ArrayLike,
    *,
    attack: float,
    decay: float,
    sustain: float,
    release: float,
    duration: float,
) -> FloatArray:
    """ADSR with a squared attack and wobbling decay/sustain/release segments."""
    time = _time(t)
    release_start = duration - release
    with np.errstate(divide="ignore", invalid="ignore"):
        decay_progress = (time - attack) / decay
        release_progress = (time - release_start) / release
        envelope = np.select(
            [time < attack, time < attack + decay, time < release_start],
            [
                (time / attack) ** 2,
                (1 - decay_progress * (1 - sustain))
                * (1 - MECH_DECAY_WOBBLE + MECH_DECAY_WOBBLE * np.sin(decay_progress * np.pi * 2)),
                sustain
                * (1 - MECH_SUSTAIN_WOBBLE + MECH_SUSTAIN_WOBBLE * np.sin(time * MECH_SUSTAIN_RATE)),
            ],
            default=sustain
            * (1 - release_progress)
            * (1 - MECH_RELEASE_WOBBLE + MECH_RELEASE_WOBBLE * np.sin(release_progress * np.pi)),
        )
    return envelope


ENVELOPE_FUNCTIONS: Mapping[str, EnvelopeFn] = MappingProxyType(
    {
        "adsr": adsr_envelope,
        "mechanical": mechanical_envelope,
    }
)


# =============================================================================
# TRANSIENTS
# =============================================================================


def bump_transient(
    t: ArrayLike, *, freq: float, duration: float, intensity: float
) -> FloatArray:
    """Sine burst fading linearly to zero over ``duration`` (tactile bump)."""
    time = _time(t)
    ramp = np.clip(1 - time / duration, 0.0, None)
    return np.where(time < duration, np.sin(2 * np.pi * freq * time) * intensity * ramp, 0.0)


def click_transient(
    t: ArrayLike, *, freq: float, duration: float, intensity: float, attack: float
) -> FloatArray:
    """Sine burst with its own attack/decay envelope (clicky leaf)."""
    time = _time(t)
    with np.errstate(divide="ignore", invalid="ignore"):
        shape = np.where(
            time < attack,
            time / attack,
            1 - (time - attack) / (duration - attack),
        )
    burst = np.sin(2 * np.pi * freq * time) * intensity * shape
    return np.where(time < duration, burst, 0.0)


def blend_transient(
    signal: FloatArray,
    transient: FloatArray,
    t: ArrayLike,
    *,
    duration: float,
    blend: tuple[float, float],
) -> FloatArray:
    """Crossfade ``signal`` with ``transient`` inside the transient window."""
    keep, mix = blend
    return np.where(_time(t) < duration, signal * keep + transient * mix, signal)


# =============================================================================
# NOISE AND FILTERING
# =============================================================================


def uniform_noise(rng: np.random.Generator, size: int, amount: float = 1.0) -> FloatArray:
    """Uniform noise in ``[-amount, amount]``."""
    return rng.uniform(-1.0, 1.0, size) * amount


def blend_noise(signal: FloatArray, noise: FloatArray, amount: float) -> FloatArray:
    return signal * (1 - amount) + noise * amount


def lowpass_decay(
    t: ArrayLike, cutoff_hz: float, sample_rate: int, slope: float = 1.0
) -> FloatArray:
    """One-pole low-pass approximation: ``exp(-t * cutoff * slope / sample_rate)``."""
    return np.exp(-_time(t) * cutoff_hz * slope / sample_rate)

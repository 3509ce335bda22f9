"""Switch profile definitions.

Each profile is a plain data record: the synthesizer never branches on the
profile id, only on the closed sets of waveform, envelope and transient kinds
declared here. Adding a profile means adding data.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import UnknownProfileError
from .keys import KeyCategory

_LOGGER = logging.getLogger("mechvibe.profiles")

Waveform = Literal["sine", "triangle", "sawtooth", "square", "noise"]
EnvelopeShape = Literal["adsr", "mechanical"]
TransientKind = Literal["none", "bump", "click", "mechanical"]
NoiseWeight = Literal["scaled", "base"]

_FROZEN = ConfigDict(frozen=True, extra="forbid")


class MechanicalMix(BaseModel):
    """Component weights of a mechanical (typewriter-style) strike."""

    mechanical: float = 0.4
    metal: float = 0.2
    impact: float = 0.3
    spring: float = 0.1
    paper_level: float = 0.1
    paper_start_s: float = 0.05
    paper_end_s: float = 0.2

    model_config = _FROZEN


class Transient(BaseModel):
    kind: TransientKind = "none"
    frequency_hz: float = Field(default=0.0, ge=0.0)
    duration_s: float = Field(default=0.0, ge=0.0)
    intensity: float = Field(default=0.0, ge=0.0)
    attack_s: float = Field(default=0.0, ge=0.0)
    metal_vibration: float = Field(default=0.0, ge=0.0)
    # (signal weight, transient weight) inside the transient window
    blend: tuple[float, float] = (1.0, 0.0)
    mix: MechanicalMix | None = None

    model_config = _FROZEN

    @model_validator(mode="after")
    def _check_shape(self) -> Transient:
        if self.kind in ("bump", "click") and self.duration_s <= 0:
            raise ValueError(f"{self.kind} transient needs a positive duration")
        if self.kind == "click" and not 0 < self.attack_s < self.duration_s:
            raise ValueError("click attack must fall inside the click duration")
        if self.kind == "mechanical" and self.mix is None:
            raise ValueError("mechanical transient needs a component mix")
        return self


class BaseConfig(BaseModel):
    waveform: Waveform
    base_frequency_hz: float = Field(gt=0.0)
    attack_s: float = Field(gt=0.0)
    decay_s: float = Field(gt=0.0)
    sustain: float = Field(ge=0.0, le=1.0)
    release_s: float = Field(gt=0.0)
    noise_amount: float = Field(ge=0.0, le=1.0)
    # "base": blend weight stays at noise_amount while the per-key override scales the level
    noise_weight: NoiseWeight = "scaled"
    filter_cutoff_hz: float = Field(gt=0.0)
    filter_slope: float = Field(default=1.0, gt=0.0)
    envelope: EnvelopeShape = "adsr"
    transient: Transient = Transient()
    channel_gain: tuple[float, float] = (0.9, 0.9)
    transient_channel_gain: tuple[float, float] | None = None
    stereo_delay_s: float = Field(default=0.0, ge=0.0)
    stereo_delay_gain: float = 0.9

    model_config = _FROZEN


class KeyAdjustment(BaseModel):
    """Per-category tweaks.

    ``noise_amount`` and ``transient_intensity`` scale the profile's base
    values; ``noise_amount=None`` leaves the base noise untouched.
    """

    volume_multiplier: float = Field(default=1.0, ge=0.0)
    frequency_multiplier: float = Field(default=1.0, gt=0.0)
    duration_s: float = Field(gt=0.0)
    noise_amount: float | None = Field(default=None, ge=0.0)
    transient_intensity: float = Field(default=1.0, ge=0.0)
    label: str = ""

    model_config = _FROZEN


class RecommendedSettings(BaseModel):
    volume: float = Field(ge=0.0, le=1.0)
    pitch: float = Field(gt=0.0)
    pitch_variation: float = Field(ge=0.0, le=1.0)
    overlap: bool = True

    model_config = _FROZEN


class SwitchProfile(BaseModel):
    id: str = Field(min_length=1)
    name: str
    description: str
    long_description: str = ""
    icon: str = ""
    color: str = ""
    base: BaseConfig
    adjustments: dict[KeyCategory, KeyAdjustment]
    recommended: RecommendedSettings

    model_config = _FROZEN

    @model_validator(mode="after")
    def _require_default(self) -> SwitchProfile:
        if KeyCategory.DEFAULT not in self.adjustments:
            raise ValueError(f"profile {self.id!r} has no default adjustment")
        return self

    def adjustment(self, category: KeyCategory | str) -> KeyAdjustment:
        key = KeyCategory.coerce(category)
        return self.adjustments.get(key, self.adjustments[KeyCategory.DEFAULT])

    def noise_for(self, category: KeyCategory | str) -> float:
        """Effective noise amount for ``category``, clamped to [0, 1]."""
        scale = self.adjustment(category).noise_amount
        amount = self.base.noise_amount * (1.0 if scale is None else scale)
        return min(max(amount, 0.0), 1.0)


def _adjust(
    volume: float,
    frequency: float,
    duration: float,
    *,
    noise: float | None = None,
    transient: float = 1.0,
    label: str = "",
) -> KeyAdjustment:
    return KeyAdjustment(
        volume_multiplier=volume,
        frequency_multiplier=frequency,
        duration_s=duration,
        noise_amount=noise,
        transient_intensity=transient,
        label=label,
    )


LINEAR = SwitchProfile(
    id="linear",
    name="Linear",
    description="Smooth & quiet typing",
    long_description=(
        "Linear switches provide a smooth keystroke with no tactile bump or audible "
        "click. Perfect for fast typing and gaming."
    ),
    icon="fas fa-wave-square",
    color="#6366f1",
    base=BaseConfig(
        waveform="sine",
        base_frequency_hz=120,
        attack_s=0.001,
        decay_s=0.1,
        sustain=0.3,
        release_s=0.2,
        noise_amount=0.1,
        filter_cutoff_hz=2000,
        noise_weight="base",
        channel_gain=(0.95, 0.9),
    ),
    adjustments={
        KeyCategory.DEFAULT: _adjust(1.0, 1.0, 0.3),
        KeyCategory.SPACEBAR: _adjust(1.2, 0.7, 0.4, noise=0.05, label="Deep thock"),
        KeyCategory.ENTER: _adjust(1.1, 1.2, 0.35, noise=0.15, label="Sharp return"),
        KeyCategory.BACKSPACE: _adjust(0.9, 0.9, 0.25, noise=0.08, label="Soft delete"),
        KeyCategory.SHIFT: _adjust(0.8, 1.1, 0.28, label="Subtle shift"),
        KeyCategory.TAB: _adjust(0.85, 1.05, 0.32, label="Tab slide"),
        KeyCategory.CAPSLOCK: _adjust(0.9, 1.15, 0.3, label="Toggle click"),
        KeyCategory.MODIFIER: _adjust(0.7, 0.95, 0.2, label="Modifier"),
        KeyCategory.DIGIT: _adjust(0.95, 1.05, 0.28, label="Number keys"),
        KeyCategory.FKEY: _adjust(0.8, 1.1, 0.25, label="Function keys"),
    },
    recommended=RecommendedSettings(volume=0.7, pitch=1.0, pitch_variation=0.1, overlap=True),
)

TACTILE = SwitchProfile(
    id="tactile",
    name="Tactile",
    description="Bumpy feedback",
    long_description=(
        "Tactile switches provide a noticeable bump during the keystroke, giving "
        "satisfying feedback without being too loud. Great for typing and programming."
    ),
    icon="fas fa-mountain",
    color="#10b981",
    base=BaseConfig(
        waveform="triangle",
        base_frequency_hz=180,
        attack_s=0.001,
        decay_s=0.05,
        sustain=0.2,
        release_s=0.15,
        noise_amount=0.2,
        filter_cutoff_hz=2500,
        transient=Transient(
            kind="bump",
            frequency_hz=240,
            duration_s=0.02,
            intensity=0.3,
            blend=(0.7, 0.3),
        ),
        channel_gain=(0.9, 0.95),
    ),
    adjustments={
        KeyCategory.DEFAULT: _adjust(1.0, 1.0, 0.3),
        KeyCategory.SPACEBAR: _adjust(
            1.3, 0.7, 0.45, noise=0.1, transient=1.2, label="Heavy thock with bump"
        ),
        KeyCategory.ENTER: _adjust(
            1.2, 1.2, 0.38, noise=0.3, transient=1.1, label="Sharp tactile return"
        ),
        KeyCategory.BACKSPACE: _adjust(
            0.95, 0.9, 0.3, noise=0.16, transient=0.9, label="Tactile delete"
        ),
        KeyCategory.SHIFT: _adjust(0.85, 1.1, 0.32, label="Tactile shift"),
        KeyCategory.TAB: _adjust(0.9, 1.05, 0.35, label="Tactile slide"),
        KeyCategory.CAPSLOCK: _adjust(0.95, 1.15, 0.33, transient=1.1, label="Tactile toggle"),
        KeyCategory.MODIFIER: _adjust(0.75, 0.95, 0.25, transient=0.8, label="Tactile modifier"),
        KeyCategory.DIGIT: _adjust(1.0, 1.05, 0.31, label="Tactile numbers"),
        KeyCategory.FKEY: _adjust(0.85, 1.1, 0.28, transient=0.9, label="Tactile functions"),
    },
    recommended=RecommendedSettings(volume=0.8, pitch=1.0, pitch_variation=0.15, overlap=True),
)

CLICKY = SwitchProfile(
    id="clicky",
    name="Clicky",
    description="Loud & satisfying",
    long_description=(
        "Clicky switches provide both tactile feedback and an audible click sound. "
        "Perfect for typists who love satisfying auditory feedback."
    ),
    icon="fas fa-bullseye",
    color="#f59e0b",
    base=BaseConfig(
        waveform="sawtooth",
        base_frequency_hz=220,
        attack_s=0.001,
        decay_s=0.03,
        sustain=0.1,
        release_s=0.1,
        noise_amount=0.3,
        filter_cutoff_hz=3000,
        transient=Transient(
            kind="click",
            frequency_hz=880,
            duration_s=0.01,
            intensity=0.5,
            attack_s=0.001,
            blend=(0.6, 0.4),
        ),
        channel_gain=(0.9, 0.9),
        transient_channel_gain=(0.95, 1.05),
    ),
    adjustments={
        KeyCategory.DEFAULT: _adjust(1.0, 1.0, 0.3),
        KeyCategory.SPACEBAR: _adjust(
            1.4, 0.7, 0.5, noise=0.15, transient=1.3, label="Loud clicky thock"
        ),
        KeyCategory.ENTER: _adjust(
            1.3, 1.2, 0.4, noise=0.45, transient=1.2, label="Sharp clicky return"
        ),
        KeyCategory.BACKSPACE: _adjust(1.0, 0.9, 0.35, noise=0.24, label="Clicky delete"),
        KeyCategory.SHIFT: _adjust(0.9, 1.1, 0.34, label="Clicky shift"),
        KeyCategory.TAB: _adjust(0.95, 1.05, 0.36, label="Clicky slide"),
        KeyCategory.CAPSLOCK: _adjust(1.0, 1.15, 0.35, transient=1.1, label="Clicky toggle"),
        KeyCategory.MODIFIER: _adjust(0.8, 0.95, 0.3, transient=0.8, label="Clicky modifier"),
        KeyCategory.DIGIT: _adjust(1.05, 1.05, 0.33, label="Clicky numbers"),
        KeyCategory.FKEY: _adjust(0.9, 1.1, 0.31, transient=0.9, label="Clicky functions"),
    },
    recommended=RecommendedSettings(volume=0.9, pitch=1.0, pitch_variation=0.2, overlap=True),
)

TYPEWRITER = SwitchProfile(
    id="typewriter",
    name="Typewriter",
    description="Vintage mechanical",
    long_description=(
        "Vintage typewriter sound with mechanical keypress, carriage return simulation, "
        "and paper-like noise. Perfect for nostalgic typing experiences."
    ),
    icon="fas fa-keyboard",
    color="#8b5cf6",
    base=BaseConfig(
        waveform="noise",
        base_frequency_hz=100,
        attack_s=0.005,
        decay_s=0.3,
        sustain=0.4,
        release_s=0.5,
        noise_amount=0.4,
        filter_cutoff_hz=1500,
        filter_slope=2.0,
        envelope="mechanical",
        transient=Transient(
            kind="mechanical",
            frequency_hz=80,
            duration_s=0.1,
            intensity=0.3,
            metal_vibration=0.2,
            mix=MechanicalMix(),
        ),
        channel_gain=(1.0, 1.0),
        stereo_delay_s=0.002,
        stereo_delay_gain=0.9,
    ),
    adjustments={
        KeyCategory.DEFAULT: _adjust(1.0, 1.0, 0.6),
        KeyCategory.SPACEBAR: _adjust(
            1.5, 0.7, 0.8, noise=0.2, transient=1.5, label="Heavy typewriter space"
        ),
        KeyCategory.ENTER: _adjust(1.4, 1.2, 0.7, noise=0.6, transient=1.3, label="Carriage return"),
        KeyCategory.BACKSPACE: _adjust(
            1.1, 0.9, 0.65, noise=0.32, transient=1.1, label="Typewriter correction"
        ),
        KeyCategory.SHIFT: _adjust(0.95, 1.1, 0.62, label="Shift lever"),
        KeyCategory.TAB: _adjust(1.0, 1.05, 0.64, label="Tab mechanism"),
        KeyCategory.CAPSLOCK: _adjust(1.05, 1.15, 0.63, transient=1.1, label="Caps lock lever"),
        KeyCategory.MODIFIER: _adjust(0.85, 0.95, 0.55, transient=0.9, label="Modifier lever"),
        KeyCategory.DIGIT: _adjust(1.1, 1.05, 0.61, label="Typewriter numbers"),
        KeyCategory.FKEY: _adjust(0.95, 1.1, 0.59, transient=0.95, label="Typewriter functions"),
    },
    recommended=RecommendedSettings(volume=0.8, pitch=0.9, pitch_variation=0.25, overlap=False),
)

PROFILES: Mapping[str, SwitchProfile] = MappingProxyType(
    {profile.id: profile for profile in (LINEAR, TACTILE, CLICKY, TYPEWRITER)}
)


def get_profile(
    profile_id: str, profiles: Mapping[str, SwitchProfile] = PROFILES
) -> SwitchProfile:
    try:
        return profiles[profile_id]
    except KeyError:
        _LOGGER.debug("Unknown switch profile requested: %s", profile_id)
        raise UnknownProfileError(
            f"Unknown switch profile: {profile_id!r}. Valid: {sorted(profiles)}"
        ) from None

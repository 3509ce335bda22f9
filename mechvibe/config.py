from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .audio import SAMPLE_RATE
from .errors import InvalidParameterError
from .profiles import SwitchProfile

_LOGGER = logging.getLogger("mechvibe.config")

_ENV_PREFIX = "MECHVIBE_"
_ENV_FIELDS: Mapping[str, str] = {
    "sample_rate": "SAMPLE_RATE",
    "min_trigger_interval_ms": "MIN_TRIGGER_MS",
    "sample_fetch_timeout_s": "FETCH_TIMEOUT",
    "samples_dir": "SAMPLES_DIR",
    "resume_on_keystroke": "RESUME_ON_KEYSTROKE",
}


class PlaybackSettings(BaseModel):
    """User-facing playback preferences supplied by the settings provider.

    Accepts both snake_case and the provider's camelCase keys
    (``currentSwitch``, ``pitchVariation``, ``stereoPanning``).
    """

    enabled: bool = True
    volume: float = Field(default=0.7, ge=0.0, le=1.0)
    current_switch: str = Field(default="tactile", min_length=1)
    pitch: float = Field(default=1.0, gt=0.0, le=4.0)
    pitch_variation: float = Field(default=0.1, ge=0.0, le=1.0)
    stereo_panning: bool = False
    overlap: bool = True

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PlaybackSettings:
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise InvalidParameterError(f"Invalid playback settings: {exc}") from exc

    @classmethod
    def recommended(cls, profile: SwitchProfile, **overrides: Any) -> PlaybackSettings:
        recommended = profile.recommended
        values: dict[str, Any] = {
            "current_switch": profile.id,
            "volume": recommended.volume,
            "pitch": recommended.pitch,
            "pitch_variation": recommended.pitch_variation,
            "overlap": recommended.overlap,
        }
        values.update(overrides)
        return cls.from_mapping(values)

    def merged(self, **changes: Any) -> PlaybackSettings:
        """Return a validated copy with ``changes`` applied."""
        return self.from_mapping({**self.model_dump(), **changes})


class EngineConfig(BaseModel):
    sample_rate: int = Field(default=SAMPLE_RATE, gt=0)
    min_trigger_interval_ms: float = Field(default=10.0, ge=0.0)
    sample_fetch_timeout_s: float = Field(default=0.25, gt=0.0)
    samples_dir: Path | None = None
    resume_on_keystroke: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        source = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field, suffix in _ENV_FIELDS.items():
            raw = source.get(f"{_ENV_PREFIX}{suffix}")
            if raw:
                values[field] = raw
        if values:
            _LOGGER.debug("Engine config from environment: %s", values)
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise InvalidParameterError(f"Invalid engine configuration: {exc}") from exc

from __future__ import annotations

from .audio import SAMPLE_RATE, write_wav
from .cache import CacheUsage, SoundCache
from .config import EngineConfig, PlaybackSettings
from .dispatcher import (
    CATEGORY_GAIN,
    DispatcherHooks,
    DispatcherState,
    PlaybackDispatcher,
)
from .errors import (
    InvalidParameterError,
    MechVibeError,
    OutputUnavailableError,
    ResourceUnavailableError,
    UnknownProfileError,
)
from .keys import KeyCategory, classify, pan_for_key
from .logging_utils import configure_logging as _configure_logging
from .profiles import (
    CLICKY,
    LINEAR,
    PROFILES,
    TACTILE,
    TYPEWRITER,
    BaseConfig,
    KeyAdjustment,
    RecommendedSettings,
    SwitchProfile,
    Transient,
    get_profile,
)
from .samples import DirectorySampleProvider, SampleProvider, decode_sample, try_real_sample
from .sink import OutputBackend, OutputSink, Voice, load_backend, null_backend
from .synth import RenderedBuffer, emergency_tone, render

__all__ = [
    "SAMPLE_RATE",
    "BaseConfig",
    "CATEGORY_GAIN",
    "CLICKY",
    "CacheUsage",
    "DirectorySampleProvider",
    "DispatcherHooks",
    "DispatcherState",
    "EngineConfig",
    "InvalidParameterError",
    "KeyAdjustment",
    "KeyCategory",
    "LINEAR",
    "MechVibeError",
    "OutputBackend",
    "OutputSink",
    "OutputUnavailableError",
    "PROFILES",
    "PlaybackDispatcher",
    "PlaybackSettings",
    "RecommendedSettings",
    "RenderedBuffer",
    "ResourceUnavailableError",
    "SampleProvider",
    "SoundCache",
    "SwitchProfile",
    "TACTILE",
    "TYPEWRITER",
    "Transient",
    "UnknownProfileError",
    "Voice",
    "classify",
    "decode_sample",
    "emergency_tone",
    "get_profile",
    "load_backend",
    "null_backend",
    "pan_for_key",
    "render",
    "try_real_sample",
    "write_wav",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging

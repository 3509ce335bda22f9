"""Keystroke playback.

Resolution order for a keystroke: recorded sample for the category, the
synthesized buffer for the category, the synthesized default buffer, and a
minimal emergency tone. Any failure past the throttle degrades to silence.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Callable, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict

from .cache import SoundCache
from .config import EngineConfig, PlaybackSettings
from .errors import ResourceUnavailableError
from .keys import KeyCategory, classify, pan_for_key
from .profiles import PROFILES, SwitchProfile, get_profile
from .samples import DirectorySampleProvider, SampleProvider, try_real_sample
from .sink import OutputSink, Voice
from .synth import RenderedBuffer, emergency_tone

_LOGGER = logging.getLogger("mechvibe.dispatcher")

AudioMode = Literal["real", "synthetic"]
FallbackStage = Literal["default", "emergency"]

# Gains for recorded samples, which carry no profile adjustment of their own.
CATEGORY_GAIN: Mapping[KeyCategory, float] = MappingProxyType(
    {
        KeyCategory.SPACEBAR: 1.2,
        KeyCategory.ENTER: 1.1,
        KeyCategory.BACKSPACE: 0.9,
    }
)

# Effective per-shot playback rate after pitch and jitter.
MIN_PLAYBACK_RATE = 0.25
MAX_PLAYBACK_RATE = 4.0

TEST_SEQUENCE: tuple[tuple[str, str], ...] = (
    ("A", "KeyA"),
    ("S", "KeyS"),
    ("D", "KeyD"),
    (" ", "Space"),
    ("Enter", "Enter"),
)


class DispatcherState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    FALLBACK_SYNTHESIZING = "fallback_synthesizing"
    READY = "ready"


class DispatcherHooks(BaseModel):
    on_state_change: Callable[[DispatcherState], None] | None = None
    on_fallback: Callable[[str, KeyCategory, FallbackStage], None] | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class PlaybackDispatcher:
    def __init__(
        self,
        sink: OutputSink,
        *,
        settings: PlaybackSettings | None = None,
        config: EngineConfig | None = None,
        cache: SoundCache | None = None,
        sample_provider: SampleProvider | None = None,
        profiles: Mapping[str, SwitchProfile] = PROFILES,
        hooks: DispatcherHooks | None = None,
        clock: Callable[[], float] | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._config = config if config is not None else EngineConfig()
        self._settings = settings if settings is not None else PlaybackSettings()
        self._profiles = profiles
        self._hooks = hooks if hooks is not None else DispatcherHooks()
        self._clock = clock if clock is not None else _monotonic_ms
        self._rng = rng if rng is not None else np.random.default_rng()
        self._sink = sink
        if cache is None:
            cache = SoundCache(
                sample_rate=self._config.sample_rate,
                pitch_variation=self._settings.pitch_variation,
                profiles=profiles,
                rng=self._rng,
            )
        self._cache = cache
        if sample_provider is None and self._config.samples_dir is not None:
            sample_provider = DirectorySampleProvider(self._config.samples_dir)
        self._provider = sample_provider
        self._active_profile = get_profile(self._settings.current_switch, profiles).id
        self._samples: dict[tuple[str, KeyCategory], RenderedBuffer] = {}
        self._emergency: dict[tuple[str, KeyCategory], RenderedBuffer] = {}
        self._last_trigger: dict[KeyCategory, float] = {}
        self._state = DispatcherState.IDLE
        self._mode: AudioMode = "synthetic"
        self._load_task: asyncio.Task[None] | None = None
        self._loading_profile: str | None = None
        self._sink.set_volume(self._settings.volume)

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def mode(self) -> AudioMode:
        return self._mode

    @property
    def active_profile(self) -> str:
        return self._active_profile

    @property
    def settings(self) -> PlaybackSettings:
        return self._settings

    @property
    def cache(self) -> SoundCache:
        return self._cache

    @property
    def sink(self) -> OutputSink:
        return self._sink

    def available_profiles(self) -> tuple[str, ...]:
        return tuple(self._profiles)

    def has_real_audio(self, profile_id: str) -> bool:
        return any(key[0] == profile_id for key in self._samples)

    # -------------------------------------------------------------------------
    # Settings and profile switching
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Start the sink and load the current profile before the first keystroke."""
        self._sink.start()
        await self._load_profile(self._settings.current_switch)

    def apply_settings(self, settings: PlaybackSettings) -> asyncio.Task[None] | None:
        """Take a settings-change notification.

        Volume and pitch changes apply at once. A profile switch starts a
        background load and returns its task; keystrokes keep using the
        previous profile until the load has resolved.
        """
        profile = get_profile(settings.current_switch, self._profiles)
        previous = self._settings
        self._settings = settings
        self._sink.set_volume(settings.volume)
        self._cache.pitch_variation = settings.pitch_variation
        pending = self._load_task if self._load_task is not None and not self._load_task.done() else None
        if pending is not None and self._loading_profile == profile.id:
            return pending
        if pending is None and profile.id == previous.current_switch == self._active_profile:
            return None

        if pending is not None:
            _LOGGER.debug("Cancelling load of %s superseded by %s", self._loading_profile, profile.id)
            pending.cancel()
        self._loading_profile = profile.id
        self._load_task = asyncio.create_task(self._load_profile(profile.id))
        return self._load_task

    async def wait_until_ready(self) -> None:
        task = self._load_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def invalidate(self, profile_id: str | None = None) -> int:
        return self._cache.invalidate(profile_id)

    async def _load_profile(self, profile_id: str) -> None:
        profile = get_profile(profile_id, self._profiles)
        self._set_state(DispatcherState.LOADING)
        loaded = await self._load_real_samples(profile.id)
        if loaded:
            mode: AudioMode = "real"
            _LOGGER.info("Using %d recorded samples for %s", len(loaded), profile.id)
        else:
            mode = "synthetic"
            self._set_state(DispatcherState.FALLBACK_SYNTHESIZING)
            await self._prewarm(profile.id)
            _LOGGER.info("Using synthesized sounds for %s", profile.id)

        previous = self._active_profile
        self._samples = {(profile.id, category): buffer for category, buffer in loaded.items()}
        self._active_profile = profile.id
        self._mode = mode
        self._set_state(DispatcherState.READY)
        if previous != profile.id:
            self._cache.invalidate(previous)
            self._emergency = {
                key: buffer for key, buffer in self._emergency.items() if key[0] == profile.id
            }
        self._set_state(DispatcherState.IDLE)

    async def _load_real_samples(self, profile_id: str) -> dict[KeyCategory, RenderedBuffer]:
        provider = self._provider
        if provider is None:
            return {}
        categories = tuple(KeyCategory)
        results = await asyncio.gather(
            *(
                try_real_sample(
                    provider,
                    profile_id,
                    category,
                    sample_rate=self._config.sample_rate,
                    timeout=self._config.sample_fetch_timeout_s,
                )
                for category in categories
            )
        )
        loaded: dict[KeyCategory, RenderedBuffer] = {}
        for category, result in zip(categories, results):
            match result:
                case RenderedBuffer():
                    loaded[category] = result
                case ResourceUnavailableError():
                    _LOGGER.debug("No recorded %s/%s: %s", profile_id, category.value, result)
        return loaded

    async def _prewarm(self, profile_id: str) -> None:
        results = await asyncio.gather(
            *(self._cache.get(profile_id, category) for category in KeyCategory),
            return_exceptions=True,
        )
        for category, result in zip(KeyCategory, results):
            if isinstance(result, BaseException):
                _LOGGER.warning("Prewarm failed for %s/%s: %s", profile_id, category.value, result)

    def _set_state(self, state: DispatcherState) -> None:
        self._state = state
        _LOGGER.debug("Dispatcher state -> %s", state.value)
        if self._hooks.on_state_change is not None:
            self._hooks.on_state_change(state)

    # -------------------------------------------------------------------------
    # Playback
    # -------------------------------------------------------------------------

    async def handle_keystroke(
        self,
        key_label: str,
        key_code: str = "",
        timestamp_ms: float | None = None,
    ) -> Voice | None:
        category = classify(key_label, key_code)
        return await self.play(
            category, pan=pan_for_key(key_label, key_code), timestamp_ms=timestamp_ms
        )

    async def play(
        self,
        category: KeyCategory | str,
        *,
        pan: float | None = None,
        timestamp_ms: float | None = None,
    ) -> Voice | None:
        """Play one keystroke sound. Returns the scheduled voice, or ``None`` if dropped."""
        settings = self._settings
        if not settings.enabled:
            return None
        key = KeyCategory.coerce(category)
        now = self._clock() if timestamp_ms is None else timestamp_ms
        last = self._last_trigger.get(key)
        if last is not None and now - last < self._config.min_trigger_interval_ms:
            _LOGGER.debug("Dropping %s retrigger after %.1f ms", key.value, now - last)
            return None
        self._last_trigger[key] = now

        if not self._sink.is_running:
            _LOGGER.debug("Output sink is %s; dropping %s", self._sink.state, key.value)
            if self._config.resume_on_keystroke:
                self._sink.resume()
            return None

        try:
            buffer, gain = await self._resolve(key)
            return self._schedule(buffer, gain, pan)
        except Exception as exc:
            _LOGGER.warning("Keystroke playback failed for %s: %s", key.value, exc, exc_info=True)
            return None

    async def play_test_sequence(self, interval_s: float = 0.15) -> list[Voice]:
        voices: list[Voice] = []
        for index, (label, code) in enumerate(TEST_SEQUENCE):
            if index:
                await asyncio.sleep(interval_s)
            voice = await self.handle_keystroke(label, code)
            if voice is not None:
                voices.append(voice)
        return voices

    async def _resolve(self, category: KeyCategory) -> tuple[RenderedBuffer, float]:
        profile_id = self._active_profile
        sample = self._samples.get((profile_id, category))
        if sample is not None:
            return sample, CATEGORY_GAIN.get(category, 1.0)

        profile = get_profile(profile_id, self._profiles)
        targets = [category]
        if category is not KeyCategory.DEFAULT:
            targets.append(KeyCategory.DEFAULT)
        for target in targets:
            try:
                buffer = await self._cache.get(profile_id, target)
            except Exception as exc:
                _LOGGER.warning(
                    "Synthesis failed for %s/%s: %s", profile_id, target.value, exc, exc_info=True
                )
                continue
            if target is not category:
                self._notify_fallback(profile_id, category, "default")
            return buffer, profile.adjustment(target).volume_multiplier

        self._notify_fallback(profile_id, category, "emergency")
        return self._emergency_buffer(profile_id, category), CATEGORY_GAIN.get(category, 1.0)

    def _emergency_buffer(self, profile_id: str, category: KeyCategory) -> RenderedBuffer:
        key = (profile_id, category)
        buffer = self._emergency.get(key)
        if buffer is None:
            buffer = emergency_tone(
                profile_id, category, self._config.sample_rate, rng=self._rng
            )
            self._emergency[key] = buffer
        return buffer

    def _schedule(self, buffer: RenderedBuffer, gain: float, pan: float | None) -> Voice:
        settings = self._settings
        rate = settings.pitch
        if settings.pitch_variation > 0:
            rate *= 1.0 + float(self._rng.uniform(-1.0, 1.0)) * settings.pitch_variation
        rate = min(max(rate, MIN_PLAYBACK_RATE), MAX_PLAYBACK_RATE)
        if not settings.overlap:
            self._sink.stop_all()
        voice = self._sink.schedule(
            buffer,
            gain=gain,
            pan=pan if settings.stereo_panning else None,
            playback_rate=rate,
        )
        _LOGGER.debug(
            "Played %s/%s (%s) gain=%.2f rate=%.3f",
            buffer.profile_id,
            buffer.category.value,
            buffer.source,
            gain,
            rate,
        )
        return voice

    def _notify_fallback(self, profile_id: str, category: KeyCategory, stage: FallbackStage) -> None:
        _LOGGER.info("Falling back to %s sound for %s/%s", stage, profile_id, category.value)
        if self._hooks.on_fallback is not None:
            self._hooks.on_fallback(profile_id, category, stage)

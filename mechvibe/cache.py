from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Mapping
from typing import Protocol, TypeAlias

import numpy as np
from pydantic import BaseModel, ConfigDict

from .audio import SAMPLE_RATE
from .keys import KeyCategory
from .profiles import PROFILES, SwitchProfile, get_profile
from .synth import RenderedBuffer, render

_LOGGER = logging.getLogger("mechvibe.cache")

CacheKey: TypeAlias = tuple[str, KeyCategory]
_Generation: TypeAlias = tuple[int, int]


class Renderer(Protocol):
    def __call__(
        self,
        profile: SwitchProfile,
        category: KeyCategory,
        pitch_variation: float,
        sample_rate: int,
        *,
        rng: np.random.Generator | None = None,
        bake_volume: bool = True,
    ) -> RenderedBuffer: ...


class CacheUsage(BaseModel):
    entries: int
    bytes: int

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def megabytes(self) -> float:
        return self.bytes / (1024 * 1024)


class SoundCache:
    """Rendered buffers keyed by ``(profile_id, category)``.

    Concurrent ``get`` calls for the same key share one render task; renders
    for different keys proceed independently. Entries only leave the cache
    through ``invalidate``. Buffers are rendered without the category volume
    multiplier so one buffer serves every volume setting.
    """

    def __init__(
        self,
        *,
        sample_rate: int = SAMPLE_RATE,
        pitch_variation: float = 0.0,
        profiles: Mapping[str, SwitchProfile] = PROFILES,
        rng: np.random.Generator | None = None,
        renderer: Renderer = render,
        offload: bool = True,
    ) -> None:
        self.sample_rate = sample_rate
        self.pitch_variation = pitch_variation
        self._profiles = profiles
        self._rng = rng if rng is not None else np.random.default_rng()
        self._renderer = renderer
        self._offload = offload
        self._entries: dict[CacheKey, RenderedBuffer] = {}
        self._inflight: dict[CacheKey, asyncio.Task[RenderedBuffer]] = {}
        self._epoch = 0
        self._profile_generations: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def peek(self, profile_id: str, category: KeyCategory | str) -> RenderedBuffer | None:
        return self._entries.get((profile_id, KeyCategory.coerce(category)))

    def keys(self) -> tuple[CacheKey, ...]:
        return tuple(self._entries)

    async def get(self, profile_id: str, category: KeyCategory | str) -> RenderedBuffer:
        key: CacheKey = (profile_id, KeyCategory.coerce(category))
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            profile = get_profile(profile_id, self._profiles)
            task = asyncio.create_task(self._synthesize(profile, key[1]))
            self._inflight[key] = task
            task.add_done_callback(functools.partial(self._settle, key, self._generation(profile_id)))
        else:
            _LOGGER.debug("Joining in-flight render for %s/%s", *_describe(key))
        return await asyncio.shield(task)

    def invalidate(self, profile_id: str | None = None) -> int:
        """Drop cached buffers for one profile, or all of them. Returns the count."""

        if profile_id is None:
            dropped = len(self._entries)
            self._entries.clear()
            self._inflight.clear()
            self._epoch += 1
        else:
            stale = [key for key in self._entries if key[0] == profile_id]
            for key in stale:
                del self._entries[key]
            for key in [key for key in self._inflight if key[0] == profile_id]:
                del self._inflight[key]
            self._profile_generations[profile_id] = self._profile_generations.get(profile_id, 0) + 1
            dropped = len(stale)
        _LOGGER.debug("Invalidated %d cached buffers (profile=%s)", dropped, profile_id or "*")
        return dropped

    def memory_usage(self) -> CacheUsage:
        return CacheUsage(
            entries=len(self._entries),
            bytes=sum(buffer.nbytes for buffer in self._entries.values()),
        )

    def _generation(self, profile_id: str) -> _Generation:
        return (self._epoch, self._profile_generations.get(profile_id, 0))

    async def _synthesize(self, profile: SwitchProfile, category: KeyCategory) -> RenderedBuffer:
        # One child generator per render; worker threads never share a Generator.
        rng = self._rng.spawn(1)[0]
        call = functools.partial(
            self._renderer,
            profile,
            category,
            self.pitch_variation,
            self.sample_rate,
            rng=rng,
            bake_volume=False,
        )
        _LOGGER.debug("Rendering %s/%s at %d Hz", profile.id, category.value, self.sample_rate)
        if self._offload:
            return await asyncio.to_thread(call)
        return call()

    def _settle(
        self,
        key: CacheKey,
        generation: _Generation,
        task: asyncio.Task[RenderedBuffer],
    ) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.warning("Render failed for %s/%s: %s", *_describe(key), exc)
            return
        if self._generation(key[0]) != generation:
            _LOGGER.debug("Discarding render for %s/%s invalidated mid-flight", *_describe(key))
            return
        self._entries.setdefault(key, task.result())


def _describe(key: CacheKey) -> tuple[str, str]:
    return key[0], key[1].value

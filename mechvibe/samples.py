"""Recorded key samples.

A sample provider hands back encoded audio bytes for ``(profile, category)``.
Loading never raises: ``try_real_sample`` returns either a decoded
``RenderedBuffer`` or the ``ResourceUnavailableError`` explaining why the
caller should synthesize instead.
"""

from __future__ import annotations

import asyncio
import io
import logging
from math import gcd
from pathlib import Path
from typing import Protocol

import numpy as np
import soundfile as sf  # type: ignore[import]
from scipy.signal import resample_poly  # type: ignore[import]

from .audio import CHANNELS
from .errors import ResourceUnavailableError
from .keys import KeyCategory
from .synth import RenderedBuffer

_LOGGER = logging.getLogger("mechvibe.samples")

DEFAULT_SAMPLE_NAME = "key"
SAMPLE_SUFFIX = ".wav"


class SampleProvider(Protocol):
    async def fetch(self, profile_id: str, category: KeyCategory) -> bytes: ...


def sample_name(category: KeyCategory) -> str:
    """File stem for a category; the default category is stored as ``key``."""
    if category is KeyCategory.DEFAULT:
        return DEFAULT_SAMPLE_NAME
    return category.value


class DirectorySampleProvider:
    """Reads ``<root>/<profile>/<name>.wav`` files off the local disk."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    def path_for(self, profile_id: str, category: KeyCategory) -> Path:
        return self.root / profile_id / f"{sample_name(category)}{SAMPLE_SUFFIX}"

    def available(self, profile_id: str) -> tuple[KeyCategory, ...]:
        return tuple(
            category for category in KeyCategory if self.path_for(profile_id, category).is_file()
        )

    async def fetch(self, profile_id: str, category: KeyCategory) -> bytes:
        path = self.path_for(profile_id, category)
        if not path.is_file():
            raise ResourceUnavailableError(f"No sample at {path}")
        return await asyncio.to_thread(path.read_bytes)


def decode_sample(
    data: bytes,
    *,
    profile_id: str,
    category: KeyCategory,
    sample_rate: int,
) -> RenderedBuffer:
    """Decode audio bytes into a stereo buffer at ``sample_rate``."""

    try:
        audio, file_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    except (RuntimeError, TypeError, ValueError) as exc:
        raise ResourceUnavailableError(
            f"Cannot decode sample for {profile_id}/{category.value}: {exc}"
        ) from exc
    if audio.size == 0:
        raise ResourceUnavailableError(f"Sample for {profile_id}/{category.value} is empty")

    if audio.shape[1] == 1:
        stereo = np.repeat(audio, CHANNELS, axis=1)
    else:
        stereo = audio[:, :CHANNELS]
    if int(file_rate) != sample_rate:
        divisor = gcd(sample_rate, int(file_rate))
        stereo = resample_poly(stereo, sample_rate // divisor, int(file_rate) // divisor, axis=0)
        _LOGGER.debug(
            "Resampled %s/%s from %d Hz to %d Hz", profile_id, category.value, file_rate, sample_rate
        )
    return RenderedBuffer(
        profile_id=profile_id,
        category=category,
        sample_rate=sample_rate,
        samples=np.asarray(stereo, dtype=np.float32),
        source="sample",
    )


async def try_real_sample(
    provider: SampleProvider,
    profile_id: str,
    category: KeyCategory,
    *,
    sample_rate: int,
    timeout: float,
) -> RenderedBuffer | ResourceUnavailableError:
    try:
        data = await asyncio.wait_for(provider.fetch(profile_id, category), timeout)
        return await asyncio.to_thread(
            decode_sample,
            data,
            profile_id=profile_id,
            category=category,
            sample_rate=sample_rate,
        )
    except ResourceUnavailableError as exc:
        _LOGGER.debug("%s", exc)
        return exc
    except TimeoutError:
        _LOGGER.info("Sample fetch for %s/%s timed out", profile_id, category.value)
        return ResourceUnavailableError(
            f"Sample fetch for {profile_id}/{category.value} timed out after {timeout}s"
        )
    except Exception as exc:
        _LOGGER.warning(
            "Sample provider failed for %s/%s: %s", profile_id, category.value, exc, exc_info=True
        )
        return ResourceUnavailableError(f"Sample provider failed: {exc}")

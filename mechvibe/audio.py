from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any, Callable, cast

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .errors import InvalidParameterError

FloatArray = NDArray[np.float32]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | Sequence[Sequence[float]]

SAMPLE_RATE = 44_100
CHANNELS = 2


def ensure_audio_contract(audio: AudioNumbers, *, check_peak: bool = True) -> FloatArray:
    """Normalize dtype/shape to ``(frames, channels)`` float32.

    Rendered key sounds are allowed to overshoot ±1 (there is no limiter in the
    synthesis path); with ``check_peak`` the whole clip is scaled back under
    full scale before it leaves the process.
    """

    frames: FloatArray = np.asarray(audio, dtype=np.float32)
    match frames.ndim:
        case 1:
            frames = frames.reshape(-1, 1)
        case 2:
            pass
        case _:
            raise InvalidParameterError(f"audio must be 1-D or 2-D, got {frames.ndim} dimensions")
    if frames.size == 0 or not check_peak:
        return frames
    peak = float(np.max(np.abs(frames)))
    if peak > 1.0:
        frames = frames / peak
    return frames


def write_wav(
    path: str | Path,
    audio: AudioNumbers,
    *,
    sample_rate: int = SAMPLE_RATE,
) -> Path:
    """Write a mono or ``(frames, channels)`` array to a float WAV file."""

    if sample_rate <= 0:
        raise InvalidParameterError(f"sample_rate must be positive, got {sample_rate}")
    target = Path(path)
    frames = ensure_audio_contract(audio)
    write_fn = getattr(sf, "write", None)
    assert callable(write_fn)
    write_audio = cast(Callable[..., None], write_fn)
    write_audio(target, frames, sample_rate, subtype="FLOAT")
    return target

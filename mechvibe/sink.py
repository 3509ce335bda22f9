"""Shared audio output graph.

The sink owns the master gain and a list of active voices. Each voice is one
scheduled shot: buffer source -> [stereo pan] -> gain, disconnected and
released as soon as its last frame has been mixed. Mixing is pull-based
(``render_block``) so a device callback, or a test, drives the clock.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Literal, TypeAlias

import numpy as np
from pydantic import BaseModel, ConfigDict

from .audio import CHANNELS, SAMPLE_RATE, FloatArray
from .errors import OutputUnavailableError
from .synth import RenderedBuffer

_LOGGER = logging.getLogger("mechvibe.sink")

SinkState = Literal["running", "suspended", "closed"]
BlockRenderer: TypeAlias = Callable[[int], FloatArray]
StopFn: TypeAlias = Callable[[], None]


class OutputBackend(BaseModel):
    name: str
    start: Callable[[int, BlockRenderer], StopFn]

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


# =============================================================================
# EPHEMERAL NODES
# =============================================================================


class GainNode:
    __slots__ = ("gain", "connected")

    def __init__(self, gain: float) -> None:
        self.gain = float(gain)
        self.connected = True

    def process(self, block: FloatArray) -> FloatArray:
        return block * self.gain

    def disconnect(self) -> None:
        self.connected = False


class StereoPanNode:
    """Equal-power stereo panner for stereo input (Web Audio panning law)."""

    __slots__ = ("pan", "connected")

    def __init__(self, pan: float) -> None:
        self.pan = float(np.clip(pan, -1.0, 1.0))
        self.connected = True

    def process(self, block: FloatArray) -> FloatArray:
        left = block[:, 0]
        right = block[:, 1]
        if self.pan <= 0:
            x = (self.pan + 1) * np.pi / 2
            out_left = left + right * np.cos(x)
            out_right = right * np.sin(x)
        else:
            x = self.pan * np.pi / 2
            out_left = left * np.cos(x)
            out_right = right + left * np.sin(x)
        return np.stack((out_left, out_right), axis=1)

    def disconnect(self) -> None:
        self.connected = False


def apply_playback_rate(samples: FloatArray, rate: float) -> FloatArray:
    """Resample by linear interpolation so the clip plays ``rate`` times faster."""
    if rate <= 0:
        raise ValueError(f"playback rate must be positive, got {rate}")
    frames = samples.shape[0]
    if abs(rate - 1.0) < 1e-9 or frames < 2:
        return samples
    out_frames = max(1, int(round(frames / rate)))
    positions = np.arange(out_frames, dtype=np.float64) * rate
    source = np.arange(frames, dtype=np.float64)
    columns = [np.interp(positions, source, samples[:, channel]) for channel in range(CHANNELS)]
    return np.stack(columns, axis=1).astype(np.float32)


class Voice:
    """One scheduled shot of a buffer through its own pan/gain nodes."""

    def __init__(
        self,
        buffer: RenderedBuffer,
        *,
        gain: float = 1.0,
        pan: float | None = None,
        playback_rate: float = 1.0,
    ) -> None:
        self.buffer = buffer
        self.playback_rate = playback_rate
        self.gain_node = GainNode(gain)
        self.pan_node = StereoPanNode(pan) if pan is not None else None
        self._frames = apply_playback_rate(buffer.samples, playback_rate)
        self._position = 0
        self._ended = False
        self._ended_callbacks: list[Callable[[Voice], None]] = []

    @property
    def frame_count(self) -> int:
        return int(self._frames.shape[0])

    @property
    def position(self) -> int:
        return self._position

    @property
    def finished(self) -> bool:
        return self._position >= self.frame_count

    @property
    def ended(self) -> bool:
        return self._ended

    def on_ended(self, callback: Callable[[Voice], None]) -> None:
        if self._ended:
            callback(self)
            return
        self._ended_callbacks.append(callback)

    def pull(self, frames: int) -> FloatArray:
        out = np.zeros((frames, CHANNELS), dtype=np.float32)
        if self._ended or self.finished:
            return out
        chunk = self._frames[self._position : self._position + frames]
        if self.pan_node is not None:
            chunk = self.pan_node.process(chunk)
        chunk = self.gain_node.process(chunk)
        out[: chunk.shape[0]] = chunk
        self._position += chunk.shape[0]
        return out

    def release(self) -> None:
        """Disconnect the voice's nodes and fire ``ended`` callbacks once."""
        if self._ended:
            return
        self._ended = True
        self._position = self.frame_count
        if self.pan_node is not None:
            self.pan_node.disconnect()
        self.gain_node.disconnect()
        callbacks, self._ended_callbacks = self._ended_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception as exc:
                _LOGGER.warning("Voice ended callback failed: %s", exc, exc_info=True)


# =============================================================================
# BACKENDS
# =============================================================================


def null_backend() -> OutputBackend:
    """Backend without a device; blocks are only rendered when pulled explicitly."""

    def _start(sample_rate: int, pull: BlockRenderer) -> StopFn:
        _ = sample_rate
        _ = pull
        return lambda: None

    return OutputBackend(name="null", start=_start)


def _load_sounddevice() -> OutputBackend | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    sd: Any = sd_module

    def _start(sample_rate: int, pull: BlockRenderer) -> StopFn:
        def _callback(outdata: Any, frames: int, time_info: Any, status: Any) -> None:
            _ = time_info
            if status:
                _LOGGER.debug("Output stream status: %s", status)
            outdata[:] = pull(frames)

        stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=CHANNELS,
            dtype="float32",
            callback=_callback,
        )
        stream.start()

        def _stop() -> None:
            stream.stop()
            stream.close()

        return _stop

    return OutputBackend(name="sounddevice", start=_start)


def load_backend() -> OutputBackend:
    backend = _load_sounddevice()
    if backend is None:
        _LOGGER.warning("No audio device backend available; output is silent.")
        return null_backend()
    return backend


# =============================================================================
# SINK
# =============================================================================


class OutputSink:
    def __init__(
        self,
        *,
        sample_rate: int = SAMPLE_RATE,
        volume: float = 0.7,
        backend: OutputBackend | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self._backend = backend
        self._volume = float(np.clip(volume, 0.0, 1.0))
        self._muted = False
        self._state: SinkState = "closed"
        self._stop: StopFn | None = None
        self._voices: list[Voice] = []
        self._lock = threading.Lock()
        self._unmute_timer: threading.Timer | None = None

    def __enter__(self) -> OutputSink:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def state(self) -> SinkState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == "running"

    @property
    def backend_name(self) -> str | None:
        return self._backend.name if self._backend is not None else None

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def master_gain(self) -> float:
        return 0.0 if self._muted else self._volume

    @property
    def active_voices(self) -> tuple[Voice, ...]:
        with self._lock:
            return tuple(self._voices)

    def start(self) -> None:
        if self._state != "closed":
            return
        backend = self._backend if self._backend is not None else load_backend()
        try:
            self._stop = backend.start(self.sample_rate, self.render_block)
        except Exception as exc:
            raise OutputUnavailableError(f"Cannot open {backend.name} output: {exc}") from exc
        self._backend = backend
        self._state = "running"
        _LOGGER.info("Output sink started on %s at %d Hz", backend.name, self.sample_rate)

    def close(self) -> None:
        if self._state == "closed":
            return
        self._state = "closed"
        self._cancel_unmute()
        stop, self._stop = self._stop, None
        if stop is not None:
            stop()
        self.stop_all()

    def suspend(self) -> None:
        if self._state == "running":
            self._state = "suspended"
            _LOGGER.debug("Output sink suspended")

    def resume(self) -> None:
        if self._state == "suspended":
            self._state = "running"
            _LOGGER.debug("Output sink resumed")

    def set_volume(self, volume: float) -> None:
        self._volume = float(np.clip(volume, 0.0, 1.0))

    def mute(self) -> None:
        self._cancel_unmute()
        self._muted = True

    def unmute(self) -> None:
        self._cancel_unmute()
        self._muted = False

    def mute_temporarily(self, seconds: float = 0.5) -> None:
        was_muted = self._muted
        self.mute()
        if was_muted:
            return
        timer = threading.Timer(seconds, self._timed_unmute)
        timer.daemon = True
        self._unmute_timer = timer
        timer.start()

    def schedule(
        self,
        buffer: RenderedBuffer,
        *,
        gain: float = 1.0,
        pan: float | None = None,
        playback_rate: float = 1.0,
    ) -> Voice:
        """Start ``buffer`` immediately on a fresh voice."""
        if self._state != "running":
            raise OutputUnavailableError(f"Output sink is {self._state}")
        rate = playback_rate * buffer.sample_rate / self.sample_rate
        voice = Voice(buffer, gain=gain, pan=pan, playback_rate=rate)
        with self._lock:
            self._voices.append(voice)
        return voice

    def stop_all(self) -> None:
        with self._lock:
            voices, self._voices = self._voices, []
        for voice in voices:
            voice.release()

    def render_block(self, frames: int) -> FloatArray:
        """Mix the next ``frames`` frames of every active voice."""
        out = np.zeros((frames, CHANNELS), dtype=np.float32)
        with self._lock:
            voices = list(self._voices)
        finished: list[Voice] = []
        for voice in voices:
            out += voice.pull(frames)
            if voice.finished:
                finished.append(voice)
        if finished:
            with self._lock:
                self._voices = [voice for voice in self._voices if voice not in finished]
            for voice in finished:
                voice.release()
        out *= self.master_gain
        return out

    def _timed_unmute(self) -> None:
        self._unmute_timer = None
        self._muted = False

    def _cancel_unmute(self) -> None:
        timer, self._unmute_timer = self._unmute_timer, None
        if timer is not None:
            timer.cancel()

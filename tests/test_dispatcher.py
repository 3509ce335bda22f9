import asyncio
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from mechvibe.cache import SoundCache
from mechvibe.config import EngineConfig, PlaybackSettings
from mechvibe.dispatcher import (
    MAX_PLAYBACK_RATE,
    MIN_PLAYBACK_RATE,
    CATEGORY_GAIN,
    TEST_SEQUENCE,
    DispatcherHooks,
    DispatcherState,
    PlaybackDispatcher,
)
from mechvibe.errors import UnknownProfileError
from mechvibe.keys import KeyCategory
from mechvibe.sink import OutputSink, null_backend
from mechvibe.synth import render


class _Clock:
    def __init__(self, step: float = 0.0) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


def _make(
    *,
    settings: PlaybackSettings | None = None,
    config: EngineConfig | None = None,
    cache: SoundCache | None = None,
    hooks: DispatcherHooks | None = None,
    clock: _Clock | None = None,
) -> PlaybackDispatcher:
    sink = OutputSink(backend=null_backend())
    return PlaybackDispatcher(
        sink,
        settings=settings or PlaybackSettings(pitch_variation=0.0),
        config=config,
        cache=cache,
        hooks=hooks,
        clock=clock or _Clock(step=100.0),
        rng=np.random.default_rng(0),
    )


def _failing_renderer(fail_for):
    def _render(profile, category, pitch_variation, sample_rate, *, rng=None, bake_volume=True):
        if category in fail_for:
            raise RuntimeError(f"cannot render {category.value}")
        return render(profile, category, pitch_variation, sample_rate, rng=rng, bake_volume=bake_volume)

    return _render


def _write_sample(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    t = np.arange(2_205) / 44_100
    sf.write(path, (np.sin(2 * np.pi * 300 * t) * 0.5).astype(np.float32), 44_100)


@pytest.mark.asyncio
async def test_throttle_drops_retrigger_within_window() -> None:
    dispatcher = _make()
    await dispatcher.initialize()
    assert await dispatcher.play(KeyCategory.DEFAULT, timestamp_ms=0.0) is not None
    assert await dispatcher.play(KeyCategory.DEFAULT, timestamp_ms=5.0) is None
    assert len(dispatcher.sink.active_voices) == 1

    assert await dispatcher.play(KeyCategory.DEFAULT, timestamp_ms=15.0) is not None
    assert len(dispatcher.sink.active_voices) == 2


@pytest.mark.asyncio
async def test_throttle_is_per_category() -> None:
    dispatcher = _make()
    await dispatcher.initialize()
    assert await dispatcher.play(KeyCategory.DEFAULT, timestamp_ms=0.0) is not None
    assert await dispatcher.play(KeyCategory.SPACEBAR, timestamp_ms=1.0) is not None


@pytest.mark.asyncio
async def test_initial_load_states_without_samples() -> None:
    states: list[DispatcherState] = []
    dispatcher = _make(hooks=DispatcherHooks(on_state_change=states.append))
    await dispatcher.initialize()
    assert states == [
        DispatcherState.LOADING,
        DispatcherState.FALLBACK_SYNTHESIZING,
        DispatcherState.READY,
        DispatcherState.IDLE,
    ]
    assert dispatcher.mode == "synthetic"
    assert len(dispatcher.cache) == len(KeyCategory)


@pytest.mark.asyncio
async def test_real_samples_take_priority(tmp_path: Path) -> None:
    _write_sample(tmp_path / "tactile" / "key.wav")
    _write_sample(tmp_path / "tactile" / "spacebar.wav")
    states: list[DispatcherState] = []
    dispatcher = _make(
        config=EngineConfig(samples_dir=tmp_path),
        hooks=DispatcherHooks(on_state_change=states.append),
    )
    await dispatcher.initialize()

    assert states == [DispatcherState.LOADING, DispatcherState.READY, DispatcherState.IDLE]
    assert dispatcher.mode == "real"
    assert dispatcher.has_real_audio("tactile")
    assert not dispatcher.has_real_audio("clicky")

    voice = await dispatcher.play(KeyCategory.SPACEBAR)
    assert voice is not None
    assert voice.buffer.source == "sample"
    assert voice.gain_node.gain == CATEGORY_GAIN[KeyCategory.SPACEBAR]

    enter = await dispatcher.play(KeyCategory.ENTER)
    assert enter is not None
    assert enter.buffer.source == "synthetic"


@pytest.mark.asyncio
async def test_category_volume_applied_at_playback() -> None:
    dispatcher = _make(settings=PlaybackSettings(current_switch="linear", pitch_variation=0.0))
    await dispatcher.initialize()
    voice = await dispatcher.play(KeyCategory.SPACEBAR)
    assert voice is not None
    assert voice.gain_node.gain == pytest.approx(1.2)
    assert voice.buffer.frame_count == 17_640
    assert voice.playback_rate == pytest.approx(1.0)
    cached = dispatcher.cache.peek("linear", KeyCategory.SPACEBAR)
    assert cached is voice.buffer


@pytest.mark.asyncio
async def test_profile_switch_keeps_old_profile_until_loaded() -> None:
    dispatcher = _make()
    await dispatcher.initialize()
    task = dispatcher.apply_settings(dispatcher.settings.merged(current_switch="clicky"))
    assert task is not None

    during = await dispatcher.play(KeyCategory.DEFAULT)
    assert during is not None
    assert during.buffer.profile_id == "tactile"

    await task
    assert dispatcher.active_profile == "clicky"
    after = await dispatcher.play(KeyCategory.DEFAULT)
    assert after is not None
    assert after.buffer.profile_id == "clicky"
    assert all(key[0] == "clicky" for key in dispatcher.cache.keys())


@pytest.mark.asyncio
async def test_switch_superseded_by_newer_switch() -> None:
    dispatcher = _make()
    await dispatcher.initialize()
    first = dispatcher.apply_settings(dispatcher.settings.merged(current_switch="clicky"))
    second = dispatcher.apply_settings(dispatcher.settings.merged(current_switch="typewriter"))
    assert first is not None and second is not None
    assert dispatcher.apply_settings(dispatcher.settings.merged(volume=0.3)) is second
    await dispatcher.wait_until_ready()
    assert first.cancelled()
    assert dispatcher.active_profile == "typewriter"
    assert dispatcher.sink.volume == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_settings_without_switch_do_not_reload() -> None:
    dispatcher = _make()
    await dispatcher.initialize()
    assert dispatcher.apply_settings(dispatcher.settings.merged(volume=0.2)) is None
    assert dispatcher.sink.volume == pytest.approx(0.2)


@pytest.mark.asyncio
async def test_unknown_profile_rejected() -> None:
    dispatcher = _make()
    with pytest.raises(UnknownProfileError):
        dispatcher.apply_settings(dispatcher.settings.merged(current_switch="holy-panda"))


@pytest.mark.asyncio
async def test_falls_back_to_default_category() -> None:
    fallbacks = []
    cache = SoundCache(
        renderer=_failing_renderer({KeyCategory.ENTER}), rng=np.random.default_rng(0), offload=False
    )
    dispatcher = _make(
        cache=cache,
        hooks=DispatcherHooks(on_fallback=lambda *args: fallbacks.append(args)),
    )
    await dispatcher.initialize()
    voice = await dispatcher.play(KeyCategory.ENTER)
    assert voice is not None
    assert voice.buffer.category is KeyCategory.DEFAULT
    assert fallbacks == [("tactile", KeyCategory.ENTER, "default")]


@pytest.mark.asyncio
async def test_falls_back_to_emergency_tone() -> None:
    fallbacks = []
    cache = SoundCache(
        renderer=_failing_renderer(set(KeyCategory)), rng=np.random.default_rng(0), offload=False
    )
    dispatcher = _make(
        cache=cache,
        hooks=DispatcherHooks(on_fallback=lambda *args: fallbacks.append(args)),
    )
    await dispatcher.initialize()
    voice = await dispatcher.play(KeyCategory.SPACEBAR)
    assert voice is not None
    assert voice.buffer.source == "emergency"
    assert fallbacks[-1] == ("tactile", KeyCategory.SPACEBAR, "emergency")

    again = await dispatcher.play(KeyCategory.SPACEBAR)
    assert again is not None
    assert again.buffer is voice.buffer


@pytest.mark.asyncio
async def test_overlap_off_cuts_previous_voice() -> None:
    dispatcher = _make(settings=PlaybackSettings(overlap=False, pitch_variation=0.0))
    await dispatcher.initialize()
    first = await dispatcher.play(KeyCategory.DEFAULT)
    second = await dispatcher.play(KeyCategory.SPACEBAR)
    assert first is not None and second is not None
    assert first.ended
    assert dispatcher.sink.active_voices == (second,)


@pytest.mark.asyncio
async def test_disabled_settings_play_nothing() -> None:
    dispatcher = _make(settings=PlaybackSettings(enabled=False))
    await dispatcher.initialize()
    assert await dispatcher.handle_keystroke("a", "KeyA") is None


@pytest.mark.asyncio
async def test_suspended_sink_drops_and_resumes() -> None:
    dispatcher = _make()
    await dispatcher.initialize()
    dispatcher.sink.suspend()
    assert await dispatcher.play(KeyCategory.DEFAULT) is None
    assert dispatcher.sink.is_running
    assert await dispatcher.play(KeyCategory.DEFAULT) is not None


@pytest.mark.asyncio
async def test_suspended_sink_stays_suspended_when_configured() -> None:
    dispatcher = _make(config=EngineConfig(resume_on_keystroke=False))
    await dispatcher.initialize()
    dispatcher.sink.suspend()
    assert await dispatcher.play(KeyCategory.DEFAULT) is None
    assert dispatcher.sink.state == "suspended"


@pytest.mark.asyncio
async def test_stereo_panning_follows_key_position() -> None:
    dispatcher = _make(settings=PlaybackSettings(stereo_panning=True, pitch_variation=0.0))
    await dispatcher.initialize()
    voice = await dispatcher.handle_keystroke("q", "KeyQ")
    assert voice is not None and voice.pan_node is not None
    assert voice.pan_node.pan == pytest.approx(-0.3)

    plain = _make()
    await plain.initialize()
    centered = await plain.handle_keystroke("q", "KeyQ")
    assert centered is not None and centered.pan_node is None


@pytest.mark.asyncio
async def test_pitch_scales_playback_rate() -> None:
    dispatcher = _make(settings=PlaybackSettings(pitch=1.5, pitch_variation=0.0))
    await dispatcher.initialize()
    voice = await dispatcher.play(KeyCategory.DEFAULT)
    assert voice is not None
    assert voice.playback_rate == pytest.approx(1.5)
    assert voice.frame_count == round(voice.buffer.frame_count / 1.5)


@pytest.mark.asyncio
async def test_test_sequence_plays_every_key() -> None:
    dispatcher = _make(clock=_Clock(step=50.0))
    await dispatcher.initialize()
    voices = await dispatcher.play_test_sequence(interval_s=0.0)
    assert len(voices) == len(TEST_SEQUENCE)
    assert [voice.buffer.category for voice in voices][-2:] == [
        KeyCategory.SPACEBAR,
        KeyCategory.ENTER,
    ]


@pytest.mark.asyncio
async def test_playback_failure_degrades_to_silence(monkeypatch) -> None:
    dispatcher = _make()
    await dispatcher.initialize()

    def _boom(*args, **kwargs):
        raise RuntimeError("device lost")

    monkeypatch.setattr(dispatcher.sink, "schedule", _boom)
    assert await dispatcher.play(KeyCategory.DEFAULT) is None


@pytest.mark.asyncio
async def test_available_profiles_lists_builtins() -> None:
    dispatcher = _make()
    assert set(dispatcher.available_profiles()) == {"linear", "tactile", "clicky", "typewriter"}
    await asyncio.sleep(0)


class _FixedRng:
    def __init__(self, value: float) -> None:
        self.value = value

    def uniform(self, low: float = 0.0, high: float = 1.0, size=None) -> float:
        return self.value


def test_injected_empty_cache_is_kept() -> None:
    cache = SoundCache(offload=False)
    assert len(cache) == 0
    dispatcher = PlaybackDispatcher(OutputSink(backend=null_backend()), cache=cache)
    assert dispatcher.cache is cache


@pytest.mark.asyncio
async def test_extreme_pitch_jitter_is_clamped(monkeypatch) -> None:
    dispatcher = _make(settings=PlaybackSettings(pitch=1.0, pitch_variation=1.0))
    await dispatcher.initialize()

    monkeypatch.setattr(dispatcher, "_rng", _FixedRng(-0.999))
    slow = await dispatcher.play(KeyCategory.DEFAULT)
    assert slow is not None
    assert slow.playback_rate == pytest.approx(MIN_PLAYBACK_RATE)
    assert slow.frame_count == round(slow.buffer.frame_count / MIN_PLAYBACK_RATE)

    dispatcher.apply_settings(dispatcher.settings.merged(pitch=4.0))
    monkeypatch.setattr(dispatcher, "_rng", _FixedRng(0.999))
    fast = await dispatcher.play(KeyCategory.SPACEBAR)
    assert fast is not None
    assert fast.playback_rate == pytest.approx(MAX_PLAYBACK_RATE)

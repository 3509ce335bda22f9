import numpy as np
import pytest

from mechvibe.errors import OutputUnavailableError
from mechvibe.keys import KeyCategory
from mechvibe.sink import (
    OutputBackend,
    OutputSink,
    StereoPanNode,
    apply_playback_rate,
    null_backend,
)
from mechvibe.synth import RenderedBuffer


def _buffer(frames: int = 100, value: float = 0.5, sample_rate: int = 44_100) -> RenderedBuffer:
    return RenderedBuffer(
        profile_id="linear",
        category=KeyCategory.DEFAULT,
        sample_rate=sample_rate,
        samples=np.full((frames, 2), value, dtype=np.float32),
    )


def _sink(volume: float = 1.0) -> OutputSink:
    sink = OutputSink(volume=volume, backend=null_backend())
    sink.start()
    return sink


def test_render_block_mixes_and_applies_master_gain() -> None:
    sink = _sink(volume=0.5)
    sink.schedule(_buffer(value=0.4), gain=1.0)
    sink.schedule(_buffer(value=0.2), gain=2.0)
    block = sink.render_block(10)
    np.testing.assert_allclose(block, np.full((10, 2), (0.4 + 0.4) * 0.5), rtol=1e-6)


def test_voice_released_after_last_frame() -> None:
    sink = _sink()
    voice = sink.schedule(_buffer(frames=30))
    ended: list[bool] = []
    voice.on_ended(lambda _: ended.append(True))

    sink.render_block(20)
    assert sink.active_voices == (voice,)
    assert ended == []

    block = sink.render_block(20)
    assert sink.active_voices == ()
    assert ended == [True]
    assert voice.ended
    assert not voice.gain_node.connected
    np.testing.assert_array_equal(block[10:], 0.0)


def test_pan_node_disconnected_on_release() -> None:
    sink = _sink()
    voice = sink.schedule(_buffer(frames=5), pan=0.3)
    assert voice.pan_node is not None
    sink.render_block(8)
    assert not voice.pan_node.connected


def test_equal_power_pan_law() -> None:
    block = np.ones((1, 2), dtype=np.float32)
    center = StereoPanNode(0.0).process(block)
    hard_left = StereoPanNode(-1.0).process(block)
    hard_right = StereoPanNode(1.0).process(block)
    np.testing.assert_allclose(center, [[1.0, 1.0]], atol=1e-6)
    np.testing.assert_allclose(hard_left, [[2.0, 0.0]], atol=1e-6)
    np.testing.assert_allclose(hard_right, [[0.0, 2.0]], atol=1e-6)
    right = StereoPanNode(0.3).process(block)
    assert right[0, 1] > right[0, 0]


def test_playback_rate_changes_length() -> None:
    samples = np.zeros((1000, 2), dtype=np.float32)
    assert apply_playback_rate(samples, 2.0).shape == (500, 2)
    assert apply_playback_rate(samples, 0.5).shape == (2000, 2)
    assert apply_playback_rate(samples, 1.0) is samples
    with pytest.raises(ValueError):
        apply_playback_rate(samples, 0.0)


def test_schedule_compensates_for_buffer_rate() -> None:
    sink = _sink()
    voice = sink.schedule(_buffer(frames=220, sample_rate=22_050))
    assert voice.frame_count == 440


def test_schedule_requires_running_sink() -> None:
    sink = OutputSink(backend=null_backend())
    with pytest.raises(OutputUnavailableError):
        sink.schedule(_buffer())
    sink.start()
    sink.suspend()
    assert sink.state == "suspended"
    with pytest.raises(OutputUnavailableError):
        sink.schedule(_buffer())
    sink.resume()
    assert sink.schedule(_buffer()) is not None


def test_failing_backend_raises_output_unavailable() -> None:
    def _start(sample_rate, pull):
        raise OSError("no device")

    sink = OutputSink(backend=OutputBackend(name="broken", start=_start))
    with pytest.raises(OutputUnavailableError):
        sink.start()
    assert sink.state == "closed"


def test_close_stops_backend_and_voices() -> None:
    stopped: list[bool] = []

    def _start(sample_rate, pull):
        return lambda: stopped.append(True)

    with OutputSink(backend=OutputBackend(name="fake", start=_start)) as sink:
        voice = sink.schedule(_buffer())
        assert sink.backend_name == "fake"
    assert stopped == [True]
    assert voice.ended
    assert sink.state == "closed"


def test_mute_and_volume() -> None:
    sink = _sink(volume=0.8)
    sink.schedule(_buffer(frames=1000, value=1.0))
    sink.mute()
    np.testing.assert_array_equal(sink.render_block(10), 0.0)
    sink.unmute()
    sink.set_volume(1.5)
    assert sink.volume == 1.0
    np.testing.assert_allclose(sink.render_block(10), 1.0)


def test_mute_temporarily_restores_sound(monkeypatch) -> None:
    sink = _sink()
    timers = []

    class _Timer:
        def __init__(self, interval, function):
            self.interval = interval
            self.function = function
            self.daemon = False
            timers.append(self)

        def start(self):
            pass

        def cancel(self):
            pass

    monkeypatch.setattr("mechvibe.sink.threading.Timer", _Timer)
    sink.mute_temporarily(0.25)
    assert sink.muted
    assert timers[0].interval == 0.25
    timers[0].function()
    assert not sink.muted


def test_stop_all_releases_everything() -> None:
    sink = _sink()
    voices = [sink.schedule(_buffer()) for _ in range(3)]
    sink.stop_all()
    assert sink.active_voices == ()
    assert all(voice.ended for voice in voices)

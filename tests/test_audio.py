from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from mechvibe.audio import ensure_audio_contract, write_wav
from mechvibe.errors import InvalidParameterError


def test_ensure_audio_contract_shapes() -> None:
    mono = ensure_audio_contract([0.0, 0.5, -0.5])
    assert mono.shape == (3, 1)
    assert mono.dtype == np.float32
    stereo = ensure_audio_contract(np.zeros((4, 2)))
    assert stereo.shape == (4, 2)
    with pytest.raises(InvalidParameterError):
        ensure_audio_contract(np.zeros((2, 2, 2)))


def test_ensure_audio_contract_scales_overshoot() -> None:
    frames = ensure_audio_contract(np.array([[2.0, -1.0], [0.5, 0.5]]))
    assert np.abs(frames).max() == pytest.approx(1.0)
    untouched = ensure_audio_contract(np.array([[2.0, 0.0]]), check_peak=False)
    assert untouched[0, 0] == 2.0


def test_write_wav_round_trip(tmp_path: Path) -> None:
    audio = np.stack([np.linspace(-0.5, 0.5, 100)] * 2, axis=1)
    path = write_wav(tmp_path / "out.wav", audio, sample_rate=22_050)
    data, rate = sf.read(path, always_2d=True)
    assert rate == 22_050
    assert data.shape == (100, 2)


def test_write_wav_rejects_bad_rate(tmp_path: Path) -> None:
    with pytest.raises(InvalidParameterError):
        write_wav(tmp_path / "out.wav", [0.0], sample_rate=0)

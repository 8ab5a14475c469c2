"""
Tests for dsp_engine/prep.py - the preprocessing chains feeding the extractors.

Test organisation:
    TestNormalize        - peak normalisation and the silence guard
    TestCropToLoudest    - loudest-window search and tie-breaking
    TestFilterChains     - tempo and key band shaping
    TestDownmixAndEncode - mono WAV export
"""

import numpy as np
import soundfile as sf

from audio_analyzer.dsp_engine.prep import (
    crop_to_loudest_window,
    downmix,
    downmix_and_encode,
    key_filter,
    normalize,
    tempo_filter,
    window_rms_scores,
)


def _rms(x) -> float:
    return float(np.sqrt(np.mean(np.square(np.asarray(x, dtype=np.float64)))))


# ---------------------------------------------------------------------------
# normalize
# ---------------------------------------------------------------------------


class TestNormalize:
    def test_peak_lands_on_target(self, make_sine):
        buf = make_sine(440.0, 1.0, 8000, amplitude=0.25, channels=2)
        out = normalize(buf, -6.0)

        assert out.shape == buf.shape
        assert np.isclose(np.max(np.abs(out)), 10 ** (-6.0 / 20.0), atol=1e-4)

    def test_near_silence_is_left_alone(self):
        buf = np.full((1, 1000), 0.0005, dtype=np.float32)
        out = normalize(buf)

        np.testing.assert_array_equal(out, buf)
        assert out is not buf

    def test_mono_input_becomes_one_channel(self):
        out = normalize(np.array([0.1, -0.2, 0.05], dtype=np.float32), 0.0)
        assert out.shape == (1, 3)
        assert np.isclose(np.max(np.abs(out)), 1.0)


# ---------------------------------------------------------------------------
# crop_to_loudest_window
# ---------------------------------------------------------------------------


class TestCropToLoudest:
    def test_finds_loud_section(self):
        sr = 1000
        buf = np.full((1, 10 * sr), 0.01, dtype=np.float32)
        buf[:, 6 * sr : 8 * sr] = 0.8

        out = crop_to_loudest_window(buf, sr, 2.0)
        assert out.shape == (1, 2 * sr)
        assert np.allclose(out, 0.8)

    def test_earliest_of_equal_windows_wins(self):
        sr = 1000
        buf = np.ones((2, 5 * sr), dtype=np.float32)
        buf[:, ::2] = -1.0

        out = crop_to_loudest_window(buf, sr, 1.0)
        np.testing.assert_array_equal(out, buf[:, :sr])

    def test_short_buffer_is_unchanged(self):
        buf = np.random.default_rng(0).uniform(-1, 1, (2, 500)).astype(np.float32)
        np.testing.assert_array_equal(crop_to_loudest_window(buf, 1000, 1.0), buf)

    def test_buffer_equal_to_window_is_unchanged(self):
        buf = np.random.default_rng(1).uniform(-1, 1, (1, 1000)).astype(np.float32)
        np.testing.assert_array_equal(crop_to_loudest_window(buf, 1000, 1.0), buf)

    def test_selected_window_scores_highest(self):
        sr = 200
        rng = np.random.default_rng(7)
        buf = (rng.uniform(-1, 1, (2, 20 * sr)) * rng.uniform(0, 1, (1, 20 * sr))).astype(np.float32)

        starts, scores = window_rms_scores(buf, sr, 3.0)
        out = crop_to_loudest_window(buf, sr, 3.0)
        chosen = int(starts[int(np.argmax(scores))])

        np.testing.assert_array_equal(out, buf[:, chosen : chosen + 3 * sr])
        assert np.all(scores <= scores[starts == chosen][0])

    def test_no_candidates_when_buffer_fits(self):
        starts, scores = window_rms_scores(np.zeros((1, 100)), 100, 1.0)
        assert starts.size == 0 and scores.size == 0


# ---------------------------------------------------------------------------
# Filter chains
# ---------------------------------------------------------------------------


class TestFilterChains:
    SR = 44100

    def test_tempo_filter_keeps_bass(self, make_sine):
        bass = make_sine(200.0, 2.0, self.SR)
        out = tempo_filter(bass, self.SR)

        assert out.shape == bass.shape
        half = bass.shape[1] // 2
        # band sum is pulled down by 0.707
        assert 0.6 < _rms(out[:, half:]) / _rms(bass[:, half:]) < 0.8

    def test_tempo_filter_drops_mids(self, make_sine):
        mids = make_sine(3000.0, 2.0, self.SR)
        out = tempo_filter(mids, self.SR)

        half = mids.shape[1] // 2
        assert _rms(out[:, half:]) < 0.3 * _rms(mids[:, half:])

    def test_key_filter_suppresses_sub_bass(self, make_sine):
        sub = key_filter(make_sine(40.0, 2.0, self.SR), self.SR)
        mid = key_filter(make_sine(1000.0, 2.0, self.SR), self.SR)

        half = sub.shape[1] // 2
        assert _rms(sub[:, half:]) < 0.3 * _rms(mid[:, half:])

    def test_filters_accept_empty_buffers(self):
        empty = np.zeros((2, 0), dtype=np.float32)
        assert tempo_filter(empty, self.SR).shape == (2, 0)
        assert key_filter(empty, self.SR).shape == (2, 0)


# ---------------------------------------------------------------------------
# downmix_and_encode
# ---------------------------------------------------------------------------


class TestDownmixAndEncode:
    def test_downmix_averages_channels(self):
        buf = np.array([[1.0, 0.0], [0.0, 1.0]], dtype=np.float32)
        np.testing.assert_allclose(downmix(buf), [0.5, 0.5])

    def test_writes_mono_pcm16_over_existing_file(self, tmp_path, make_sine):
        target = tmp_path / "out.wav"
        target.write_bytes(b"stale")
        buf = make_sine(440.0, 0.5, 22050, amplitude=1.5, channels=2)

        assert downmix_and_encode(buf, 22050, target)

        info = sf.info(str(target))
        assert info.channels == 1
        assert info.samplerate == 22050
        assert info.subtype == "PCM_16"
        data, _ = sf.read(str(target))
        assert np.max(np.abs(data)) <= 1.0

    def test_unwritable_target_reports_failure(self, tmp_path):
        target = tmp_path / "missing" / "out.wav"
        assert not downmix_and_encode(np.zeros((1, 100), dtype=np.float32), 8000, target)

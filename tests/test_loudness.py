"""
Tests for dsp_engine/loudness.py - the streaming EBU R128 meter.

Test organisation:
    TestReferenceSignals - calibrated tones, sweeps and level steps
    TestSentinels        - silence and undecodable input
    TestStreaming        - block-size independence and meter warm-up
"""

import numpy as np
import pytest
from scipy.signal import chirp

from audio_analyzer.dsp_engine.loudness import (
    NOT_MEASURED,
    LoudnessMeter,
    measure_buffer_loudness,
    measure_loudness,
)

SR = 48000


# ---------------------------------------------------------------------------
# Reference signals
# ---------------------------------------------------------------------------


class TestReferenceSignals:
    def test_reference_tone(self, make_sine):
        # -6 dBFS 1 kHz sine in one channel reads about -9.03 LUFS
        result = measure_buffer_loudness(make_sine(1000.0, 10.0, SR, amplitude=0.5), SR)

        assert result.integrated_lufs == pytest.approx(-9.03, abs=0.3)
        assert result.momentary_max_lufs == pytest.approx(result.integrated_lufs, abs=0.3)
        assert result.short_term_max_lufs == pytest.approx(result.integrated_lufs, abs=0.3)
        assert result.true_peak_max_db == pytest.approx(-6.02, abs=0.3)
        assert result.loudness_range < 0.5
        assert result.dynamics_plr == pytest.approx(result.true_peak_max_db - result.integrated_lufs)

    @pytest.mark.parametrize("block_size", [4096, 1000, 256])
    def test_low_frequency_true_peak(self, make_sine, block_size):
        result = measure_buffer_loudness(make_sine(50.0, 10.0, SR, amplitude=0.5), SR, block_size=block_size)

        assert result.true_peak_max_db == pytest.approx(-6.02, abs=0.1)

    def test_inter_sample_peak(self):
        # quarter-rate sine sampled 45 degrees off its crests; samples sit 3 dB below the true peak
        n = np.arange(SR * 2)
        fade_in = np.minimum(n / (SR * 0.1), 1.0)
        tone = (0.5 * fade_in * np.sin(np.pi / 2.0 * n + np.pi / 4.0)).astype(np.float32)

        result = measure_buffer_loudness(tone[np.newaxis, :], SR, block_size=1000)

        assert float(20.0 * np.log10(np.max(np.abs(tone)))) == pytest.approx(-9.03, abs=0.05)
        assert result.true_peak_max_db == pytest.approx(-6.02, abs=0.3)

    def test_sine_sweep(self):
        sr = 44100
        t = np.arange(40 * sr) / float(sr)
        sweep = (0.5 * chirp(t, f0=20.0, t1=40.0, f1=20000.0, method="logarithmic")).astype(np.float32)

        result = measure_buffer_loudness(sweep, sr)

        assert NOT_MEASURED < result.integrated_lufs < result.momentary_max_lufs
        assert result.loudness_range >= 0.0
        assert result.true_peak_max_db > NOT_MEASURED

    def test_two_level_programme_range(self, make_sine):
        quiet = make_sine(1000.0, 10.0, SR, amplitude=0.05)
        loud = make_sine(1000.0, 10.0, SR, amplitude=0.5)
        result = measure_buffer_loudness(np.concatenate([quiet, loud], axis=1), SR)

        assert 15.0 < result.loudness_range < 21.0
        assert result.momentary_max_lufs > result.integrated_lufs

    def test_file_matches_buffer(self, make_sine, write_wav):
        buf = make_sine(1000.0, 5.0, SR, amplitude=0.5, channels=2)
        path = write_wav("tone.wav", buf, SR)

        from_file = measure_loudness(path)
        from_buffer = measure_buffer_loudness(buf, SR)

        assert from_file.integrated_lufs == pytest.approx(from_buffer.integrated_lufs, abs=0.01)
        assert from_file.elapsed_ms > 0.0


# ---------------------------------------------------------------------------
# Sentinels
# ---------------------------------------------------------------------------


class TestSentinels:
    def test_silence(self):
        result = measure_buffer_loudness(np.zeros((2, SR * 5), dtype=np.float32), SR)

        assert result.integrated_lufs == NOT_MEASURED
        assert result.momentary_max_lufs == NOT_MEASURED
        assert result.short_term_max_lufs == NOT_MEASURED
        assert result.true_peak_max_db == NOT_MEASURED
        assert result.loudness_range == 0.0
        assert result.dynamics_plr == 0.0

    def test_unreadable_file(self, tmp_path):
        bogus = tmp_path / "not_audio.wav"
        bogus.write_bytes(b"definitely not a wav file")

        result = measure_loudness(bogus)
        assert result.integrated_lufs == NOT_MEASURED
        assert result.true_peak_max_db == NOT_MEASURED


# ---------------------------------------------------------------------------
# Streaming behaviour
# ---------------------------------------------------------------------------


class TestStreaming:
    def test_block_size_does_not_change_gated_values(self, make_sine):
        rng = np.random.default_rng(1)
        buf = make_sine(250.0, 6.0, SR, amplitude=0.3, channels=2)
        buf = buf * rng.uniform(0.2, 1.0, size=(1, buf.shape[1])).astype(np.float32)

        a = measure_buffer_loudness(buf, SR, block_size=4096)
        b = measure_buffer_loudness(buf, SR, block_size=1000)

        assert a.integrated_lufs == pytest.approx(b.integrated_lufs, abs=1e-6)
        assert a.loudness_range == pytest.approx(b.loudness_range, abs=1e-6)

    def test_short_term_warms_up_from_silence(self, make_sine):
        meter = LoudnessMeter(SR, 1)
        meter.add_frames(make_sine(1000.0, 0.5, SR, amplitude=0.5))
        # half a second of signal in a three second window
        assert meter.short_term() < meter.momentary() - 5.0

    def test_rejects_wrong_channel_count(self):
        meter = LoudnessMeter(SR, 2)
        with pytest.raises(ValueError):
            meter.add_frames(np.zeros((1, 128), dtype=np.float32))

    def test_rejects_bad_configuration(self):
        with pytest.raises(ValueError):
            LoudnessMeter(0, 2)

"""
Test the per-channel Retinex pipeline
"""
import numpy as np
import pytest

from retinex.errors import DegenerateInput, InvalidArgument
from retinex.normalize import mean_std
from retinex.pipeline import (
    PhaseTimer,
    balance_channels,
    non_alpha_count,
    retinex_channel,
    retinex_channels,
    retinex_image,
)


class TestNonAlphaCount:

    @pytest.mark.parametrize("nc, expected", [(1, 1), (2, 1), (3, 3), (4, 3)])
    def test_counts(self, nc, expected):
        assert non_alpha_count(nc) == expected

    def test_no_channel(self):
        with pytest.raises(InvalidArgument):
            non_alpha_count(0)


class TestRetinexChannel:

    def test_flat_gray_scenario(self):
        """All-zero 2x2 gray channel ends up at the middle gray"""
        out = retinex_channels([np.zeros((2, 2))], 0.0)
        np.testing.assert_array_equal(out[0], np.full((2, 2), 127.5))

    def test_histogram_range(self, sample_channel):
        out = retinex_channel(sample_channel, 5.0)
        assert out.shape == sample_channel.shape
        assert out.min() == pytest.approx(0.0)
        assert out.max() == pytest.approx(255.0)

    def test_mean_std_mode(self, sample_channel):
        """The output keeps the statistics of the input channel"""
        out = retinex_channel(sample_channel, 5.0, mode="mean_std")
        m_out, dt_out = mean_std(out)
        m_in, dt_in = mean_std(sample_channel)
        assert m_out == pytest.approx(m_in, rel=1e-5)
        assert dt_out == pytest.approx(dt_in, rel=1e-5)

    def test_mean_std_mode_on_flat_channel(self):
        with pytest.raises(DegenerateInput):
            retinex_channel(np.full((4, 4), 9.0), 0.0, mode="mean_std")

    def test_unknown_mode(self, sample_channel):
        with pytest.raises(InvalidArgument):
            retinex_channel(sample_channel, 5.0, mode="gamma")

    def test_observer(self, sample_channel):
        timer = PhaseTimer()
        retinex_channel(sample_channel, 5.0, observer=timer, index=2)
        assert set(timer.timings) == {("laplacian", 2), ("poisson", 2), ("normalize", 2)}
        assert all(seconds >= 0.0 for seconds in timer.timings.values())

    def test_observer_accumulates(self, sample_channel):
        timer = PhaseTimer()
        retinex_channel(sample_channel, 5.0, observer=timer)
        first = dict(timer.timings)
        retinex_channel(sample_channel, 5.0, observer=timer)
        assert set(timer.timings) == set(first)
        for key, seconds in first.items():
            assert timer.timings[key] >= seconds
        assert timer.totals()["poisson"] == pytest.approx(timer.timings[("poisson", 0)])


class TestRetinexChannels:

    def test_alpha_passthrough(self, sample_rgba):
        out = retinex_channels(sample_rgba, 4.0)
        assert len(out) == 4
        assert out[3] is sample_rgba[3]
        for channel in out[:3]:
            assert channel.shape == (16, 20)
            assert channel.min() >= 0.0 and channel.max() <= 255.0

    def test_gray_alpha(self, sample_channel):
        alpha = np.ones_like(sample_channel)
        out = retinex_channels([sample_channel, alpha], 4.0)
        assert out[1] is alpha

    def test_inputs_untouched(self, sample_rgba):
        before = [c.copy() for c in sample_rgba]
        retinex_channels(sample_rgba, 4.0)
        for channel, original in zip(sample_rgba, before):
            np.testing.assert_array_equal(channel, original)

    def test_workers_match_sequential(self, sample_rgba):
        sequential = retinex_channels(sample_rgba, 4.0, workers=1)
        parallel = retinex_channels(sample_rgba, 4.0, workers=3)
        for a, b in zip(sequential, parallel):
            np.testing.assert_allclose(a, b)

    def test_channels_are_independent(self, sample_rgba):
        """Each color channel gives the same result alone or in an image"""
        out = retinex_channels(sample_rgba, 4.0)
        alone = retinex_channel(sample_rgba[1], 4.0)
        np.testing.assert_allclose(out[1], alone)

    def test_timer_per_channel(self, sample_rgba):
        timer = PhaseTimer()
        retinex_channels(sample_rgba, 4.0, workers=2, observer=timer)
        assert len(timer.timings) == 9
        assert set(timer.totals()) == {"laplacian", "poisson", "normalize"}

    def test_shape_mismatch(self):
        with pytest.raises(InvalidArgument):
            retinex_channels([np.zeros((2, 2)), np.zeros((2, 3)), np.zeros((2, 2))], 1.0)

    def test_no_channels(self):
        with pytest.raises(InvalidArgument):
            retinex_channels([], 1.0)

    def test_invalid_workers(self, sample_rgba):
        with pytest.raises(InvalidArgument):
            retinex_channels(sample_rgba, 4.0, workers=0)

    def test_invalid_threshold(self, sample_rgba):
        with pytest.raises(InvalidArgument):
            retinex_channels(sample_rgba, -1.0)


class TestBalanceAndImage:

    def test_balance_channels(self, sample_rgba):
        out = balance_channels(sample_rgba, saturation=0.0)
        assert out[3] is sample_rgba[3]
        for channel in out[:3]:
            assert channel.min() == pytest.approx(0.0)
            assert channel.max() == pytest.approx(255.0)

    def test_retinex_image_rgb(self, rng):
        image = rng.uniform(0, 255, size=(12, 9, 3))
        out = retinex_image(image, 2.0)
        assert out.shape == (12, 9, 3)
        np.testing.assert_allclose(out[:, :, 0], retinex_channel(image[:, :, 0], 2.0))

    def test_retinex_image_gray(self, sample_channel):
        out = retinex_image(sample_channel, 2.0)
        assert out.shape == sample_channel.shape

    def test_retinex_image_bad_shape(self):
        with pytest.raises(InvalidArgument):
            retinex_image(np.zeros(5), 2.0)

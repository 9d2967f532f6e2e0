"""Tests for node contracts, the registry and the stateful filters."""

import numpy as np
import pytest

import convert  # noqa: F401
import spectral  # noqa: F401
import windows  # noqa: F401
from filters import (
    AutoCorrelation,
    Biquad,
    ConfigurationError,
    Gain,
    LeakyIntegrator,
    Processor,
    available_nodes,
    build_node,
    register_node,
)
from generators import Generator


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestRegistry:

    def test_builtin_nodes_registered(self):
        names = available_nodes()
        for name in ("gain", "biquad", "leaky", "autocorr", "window", "fft", "ifft", "r2c", "c2r"):
            assert name in names
            assert names[name]

    def test_build_node_from_cli_params(self):
        node = build_node("Leaky", alpha=0.5, initial=2)
        assert isinstance(node, LeakyIntegrator)
        assert node.alpha == 0.5
        assert node.last_value == 2.0

    def test_build_biquad_from_strings(self):
        node = build_node("biquad", b="1,1,0", a="3,-1,0")
        np.testing.assert_array_equal(node.b, [1.0, 1.0, 0.0])
        np.testing.assert_array_equal(node.a, [3.0, -1.0, 0.0])

    def test_build_rc_lowpass(self):
        node = build_node("biquad", rc=1.0, t=0.1)
        np.testing.assert_allclose(node.a, [21.0, -19.0, 0.0])

    def test_unknown_node(self):
        with pytest.raises(KeyError):
            build_node("reverb")

    def test_duplicate_name_rejected(self):
        with pytest.raises(ValueError):
            @register_node("gain", help="again")
            class _Other(Processor):
                pass


# ---------------------------------------------------------------------------
# Gain
# ---------------------------------------------------------------------------

class TestGain:

    def test_real_and_complex(self):
        g = Gain(0.5)
        out = np.zeros(2, dtype=np.float32)
        g.process(np.array([2.0, -4.0], dtype=np.float32), out)
        np.testing.assert_array_equal(out, [1.0, -2.0])

        cout = np.zeros(1, dtype=np.complex64)
        g.process(np.array([2 + 2j], dtype=np.complex64), cout)
        np.testing.assert_array_equal(cout, [1 + 1j])


# ---------------------------------------------------------------------------
# Biquad
# ---------------------------------------------------------------------------

class TestBiquad:

    def test_split_processing_matches_whole(self, rng):
        x = rng.standard_normal(64).astype(np.float32)
        whole = np.zeros(64, dtype=np.float32)
        Biquad([0.2, 0.4, 0.2], [1.0, -0.5, 0.25]).process(x, whole)

        f = Biquad([0.2, 0.4, 0.2], [1.0, -0.5, 0.25])
        split = np.zeros(64, dtype=np.float32)
        f.process(x[:20], split[:20])
        f.process(x[20:], split[20:])
        np.testing.assert_allclose(split, whole, rtol=1e-5, atol=1e-6)

    def test_rc_lowpass_step_response(self):
        rc, t = 1.0, 0.1
        f = Biquad.rc_lowpass(rc, t)
        out = np.zeros(50, dtype=np.float32)
        f.process(np.ones(50, dtype=np.float32), out)

        n = np.arange(50)
        expected = 1.0 - (20.0 / 21.0) * (19.0 / 21.0) ** n
        np.testing.assert_allclose(out, expected, rtol=1e-5)
        analog = 1.0 - np.exp(-n * t / rc)
        np.testing.assert_allclose(out, analog, atol=0.05)

    def test_a0_normalizes(self):
        f = Biquad([2.0, 0.0, 0.0], [2.0, 0.0, 0.0])
        out = np.zeros(3, dtype=np.float32)
        f.process(np.array([1.0, 2.0, 3.0], dtype=np.float32), out)
        np.testing.assert_allclose(out, [1.0, 2.0, 3.0])

    def test_zero_a0_rejected(self):
        with pytest.raises(ConfigurationError):
            Biquad([1.0, 0.0, 0.0], [0.0, 1.0, 0.0])

    @pytest.mark.parametrize("b,a", [
        ([1.0, 0.0], [1.0, 0.0, 0.0]),
        ([1.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0]),
    ])
    def test_wrong_coefficient_count_rejected(self, b, a):
        with pytest.raises(ConfigurationError):
            Biquad(b, a)

    def test_only_shared_prefix_is_touched(self, guarded):
        x = np.ones(10, dtype=np.float32)
        x[4:] = np.nan
        backing, out = guarded(4)
        Biquad([0.5, 0.5, 0.0], [1.0, 0.0, 0.0]).process(x, out)
        np.testing.assert_allclose(out, [0.5, 1.0, 1.0, 1.0])
        np.testing.assert_array_equal(backing[:2], -7.0)
        np.testing.assert_array_equal(backing[-2:], -7.0)

    def test_reset_clears_history(self):
        f = Biquad([0.0, 1.0, 0.0], [1.0, 0.0, 0.0])
        out = np.zeros(1, dtype=np.float32)
        f.process(np.array([5.0], dtype=np.float32), out)
        f.reset()
        f.process(np.array([1.0], dtype=np.float32), out)
        assert out[0] == 0.0


# ---------------------------------------------------------------------------
# Leaky integrator
# ---------------------------------------------------------------------------

class TestLeakyIntegrator:

    def test_known_values(self):
        f = LeakyIntegrator(alpha=0.1, initial=15.0)
        out = np.zeros(3, dtype=np.float32)
        f.process(np.array([10.0, 20.0, 100.0], dtype=np.float32), out)
        np.testing.assert_allclose(out, [14.5, 15.05, 23.545], rtol=1e-6)
        assert f.last_value == pytest.approx(23.545, rel=1e-6)

    def test_next_value_matches_block(self):
        f = LeakyIntegrator(alpha=0.1, initial=15.0)
        got = [f.next_value(v) for v in (10.0, 20.0, 100.0)]
        assert got == pytest.approx([14.5, 15.05, 23.545])

    def test_state_carries_across_buffers(self):
        f = LeakyIntegrator(alpha=0.1, initial=15.0)
        a = np.zeros(1, dtype=np.float32)
        b = np.zeros(2, dtype=np.float32)
        f.process(np.array([10.0], dtype=np.float32), a)
        f.process(np.array([20.0, 100.0], dtype=np.float32), b)
        np.testing.assert_allclose(np.concatenate([a, b]), [14.5, 15.05, 23.545], rtol=1e-6)

    @pytest.mark.parametrize("initial,v", [(0.0, 1.0), (5.0, 1.0), (0.0, -3.0), (2.0, 2.0)])
    def test_converges_from_any_state(self, initial, v):
        f = LeakyIntegrator(alpha=0.2, initial=initial)
        out = np.zeros(100, dtype=np.float32)
        f.process(np.full(100, v, dtype=np.float32), out)
        dist = np.abs(out.astype(np.float64) - v)
        # past ~40 samples the gap falls under float32 resolution
        if initial != v:
            assert np.all(np.diff(dist[:40]) < 0)
        assert np.all(np.diff(dist) <= 1e-6)
        assert out[-1] == pytest.approx(v, abs=1e-5)

    def test_prefix_only(self, guarded):
        x = np.ones(10, dtype=np.float32)
        x[4:] = np.nan
        backing, out = guarded(4)
        f = LeakyIntegrator(alpha=0.5)
        f.process(x, out)
        np.testing.assert_allclose(out, [0.5, 0.75, 0.875, 0.9375])
        np.testing.assert_array_equal(backing[:2], -7.0)
        np.testing.assert_array_equal(backing[-2:], -7.0)
        assert f.last_value == pytest.approx(0.9375)

    def test_reset(self):
        f = LeakyIntegrator(alpha=0.5, initial=3.0)
        f.next_value(10.0)
        f.reset()
        assert f.last_value == 3.0

    @pytest.mark.parametrize("alpha", [-0.1, 1.5])
    def test_alpha_out_of_range(self, alpha):
        with pytest.raises(ConfigurationError):
            LeakyIntegrator(alpha=alpha)


# ---------------------------------------------------------------------------
# Autocorrelation
# ---------------------------------------------------------------------------

class TestAutoCorrelation:

    def test_quarter_rate_sine(self):
        x = np.zeros(16, dtype=np.float32)
        Generator("sine", 8, freq=2).write(x)
        out = np.zeros(8, dtype=np.float32)
        AutoCorrelation(8).process(x, out)
        np.testing.assert_allclose(out[:5], [1.0, 0.0, -1.0, 0.0, 1.0], atol=1e-6)

    def test_lag_zero_is_one(self, rng):
        x = rng.standard_normal(40).astype(np.float32)
        out = np.zeros(10, dtype=np.float32)
        AutoCorrelation(16).process(x, out)
        assert out[0] == pytest.approx(1.0)

    def test_constant_input_gives_zeros(self, guarded):
        backing, out = guarded(4, fill=3.0)
        AutoCorrelation(4).process(np.full(8, 2.5, dtype=np.float32), out)
        np.testing.assert_array_equal(out, 0.0)
        np.testing.assert_array_equal(backing[:2], 3.0)

    def test_lag_count_limited_by_output(self, guarded):
        x = np.arange(20, dtype=np.float32)
        backing, out = guarded(3)
        AutoCorrelation(4).process(x, out)
        assert np.all(np.isfinite(out))
        np.testing.assert_array_equal(backing[-2:], -7.0)

    def test_tail_past_computed_lags_untouched(self, rng):
        x = rng.standard_normal(12).astype(np.float32)
        out = np.full(10, 9.0, dtype=np.float32)
        AutoCorrelation(8).process(x, out)
        assert out[0] == pytest.approx(1.0)
        np.testing.assert_array_equal(out[4:], 9.0)

    def test_short_input_writes_nothing(self):
        out = np.full(4, 9.0, dtype=np.float32)
        AutoCorrelation(8).process(np.ones(8, dtype=np.float32), out)
        np.testing.assert_array_equal(out, 9.0)

    def test_window_size_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            AutoCorrelation(0)

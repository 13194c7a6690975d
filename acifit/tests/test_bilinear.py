"""
Tests for the bilinear (segmented regression) fit.

The bilinear method must return estimates for any curve with at least one
finite observation, however degenerate.
"""

import pytest
import numpy as np
from acifit.core.models import FitParameters
from acifit.core.photosynthesis import calculate_assimilation
from acifit.core.exceptions import InsufficientData
from acifit.analysis.bilinear import fit_bilinear, linear_fit


TRUE_PARAMS = FitParameters(Vcmax=60.0, Jmax=120.0, Rd=1.5)


def make_env(n, tleaf=25.0, ppfd=1800.0):
    return np.full(n, tleaf), np.full(n, ppfd)


@pytest.fixture
def clean_curve():
    ci = np.array([50, 100, 150, 200, 300, 400, 600, 800, 1000, 1200, 1500], dtype=float)
    tleaf, ppfd = make_env(len(ci))
    a = calculate_assimilation(ci, tleaf, ppfd, TRUE_PARAMS).An
    return ci, a, tleaf, ppfd


class TestLinearFit:

    def test_exact_line(self):
        x = np.array([0.0, 1.0, 2.0, 3.0])
        intercept, slope, ss = linear_fit(x, 2.0 + 3.0 * x)
        assert np.isclose(intercept, 2.0)
        assert np.isclose(slope, 3.0)
        assert np.isclose(ss, 0.0, atol=1e-12)

    def test_rank_deficient(self):
        intercept, slope, ss = linear_fit(np.array([1.0, 1.0]), np.array([2.0, 4.0]))
        assert np.isfinite(intercept) and np.isfinite(slope)


class TestFitBilinear:

    def test_recovers_clean_curve(self, clean_curve):
        """Noise-free data are exactly two lines in the transformed covariates."""
        fit = fit_bilinear(*clean_curve)
        assert np.isclose(fit.parameters.Vcmax, 60.0, rtol=1e-6)
        assert np.isclose(fit.parameters.Rd, 1.5, rtol=1e-6)
        assert np.isclose(fit.parameters.Jmax, 120.0, rtol=1e-6)
        assert fit.breakpoint == 600.0
        assert fit.n_low + fit.n_high == 11
        assert fit.sum_of_squares < 1e-10

    def test_input_order_does_not_matter(self, clean_curve):
        ci, a, tleaf, ppfd = clean_curve
        reverse = fit_bilinear(ci[::-1], a[::-1], tleaf, ppfd)
        forward = fit_bilinear(ci, a, tleaf, ppfd)
        assert reverse.parameters == forward.parameters

    def test_forced_transition(self, clean_curve):
        fit = fit_bilinear(*clean_curve, ci_transition=450.0)
        assert fit.breakpoint == 600.0
        assert fit.n_low == 6

    def test_two_points(self):
        ci = np.array([100.0, 800.0])
        a = np.array([6.0, 20.0])
        fit = fit_bilinear(ci, a, *make_env(2))
        valid, message = fit.parameters.is_valid()
        assert valid, message
        assert np.isnan(fit.breakpoint)
        assert fit.warnings

    def test_identical_ci(self):
        ci = np.full(6, 400.0)
        a = np.array([18.0, 18.5, 17.8, 18.2, 18.1, 17.9])
        fit = fit_bilinear(ci, a, *make_env(6))
        valid, message = fit.parameters.is_valid()
        assert valid, message

    def test_single_point(self):
        fit = fit_bilinear(np.array([400.0]), np.array([15.0]), *make_env(1))
        valid, message = fit.parameters.is_valid()
        assert valid, message

    def test_noisy_three_points(self):
        ci = np.array([90.0, 350.0, 900.0])
        a = np.array([4.2, 13.9, 21.5])
        fit = fit_bilinear(ci, a, *make_env(3))
        valid, message = fit.parameters.is_valid()
        assert valid, message

    def test_no_finite_points(self):
        with pytest.raises(InsufficientData):
            fit_bilinear(np.array([np.nan]), np.array([np.nan]), *make_env(1))

"""
Tests for starting-value estimation.
"""

import pytest
import numpy as np
from acifit.core.models import FitParameters
from acifit.core.photosynthesis import calculate_assimilation, kinetic_constants
from acifit.analysis.initial_guess import (
    estimate_initial_parameters,
    estimate_vcmax_rd,
    estimate_rd,
    estimate_jmax_from_plateau,
    estimate_tpu,
    refine_on_grid,
    initial_guess_summary,
    DEFAULT_VCMAX,
    DEFAULT_RD
)


TRUE_PARAMS = FitParameters(Vcmax=60.0, Jmax=120.0, Rd=1.5)


@pytest.fixture
def clean_curve():
    """Noise-free curve at 25°C and 1800 PPFD."""
    ci = np.array([50, 100, 150, 200, 250, 300, 400, 600, 800, 1000, 1200, 1500], dtype=float)
    tleaf = np.full_like(ci, 25.0)
    ppfd = np.full_like(ci, 1800.0)
    a = calculate_assimilation(ci, tleaf, ppfd, TRUE_PARAMS).An
    return ci, a, tleaf, ppfd


class TestHeuristics:

    def test_vcmax_rd_from_rubisco_region(self, clean_curve):
        """Below the transition the regression recovers Vcmax and Rd exactly."""
        ci, a, tleaf, _ = clean_curve
        gamma_star, km = kinetic_constants(tleaf)
        vcmax, rd = estimate_vcmax_rd(ci, a, gamma_star, km)
        assert np.isclose(vcmax, 60.0, rtol=1e-6)
        assert np.isclose(rd, 1.5, rtol=1e-6)

    def test_vcmax_rd_fallback(self):
        """Without two distinct low-Ci points the defaults are used."""
        ci = np.array([500.0, 800.0, 1200.0])
        a = np.array([20.0, 24.0, 25.0])
        gamma_star, km = kinetic_constants(np.full(3, 25.0))
        vcmax, rd = estimate_vcmax_rd(ci, a, gamma_star, km)
        assert vcmax == DEFAULT_VCMAX
        assert rd == DEFAULT_RD

    def test_estimate_rd(self):
        assert np.isclose(estimate_rd(np.array([-1.5, 0, 5, 10])), 1.5)
        assert estimate_rd(np.array([2.0, 5.0])) == DEFAULT_RD
        assert estimate_rd(np.array([])) == DEFAULT_RD

    def test_jmax_from_plateau(self, clean_curve):
        ci, a, tleaf, ppfd = clean_curve
        gamma_star, _ = kinetic_constants(tleaf)
        jmax = estimate_jmax_from_plateau(ci, a, gamma_star, ppfd, 1.5, 60.0)
        assert np.isclose(jmax, 120.0, rtol=1e-6)

    def test_jmax_fallback_without_high_ci(self):
        ci = np.array([50.0, 100.0, 150.0])
        a = np.array([1.0, 4.0, 7.0])
        gamma_star, _ = kinetic_constants(np.full(3, 25.0))
        jmax = estimate_jmax_from_plateau(ci, a, gamma_star, np.full(3, 1800.0), 1.0, 50.0)
        assert np.isclose(jmax, 90.0)

    def test_tpu(self):
        assert np.isclose(estimate_tpu(np.array([5.0, 20.0, 28.0]), 2.0), 10.0)


class TestEstimateInitialParameters:

    def test_clean_curve(self, clean_curve):
        initial = estimate_initial_parameters(*clean_curve)
        assert np.isclose(initial.Vcmax, 60.0, rtol=0.05)
        assert np.isclose(initial.Jmax, 120.0, rtol=0.05)
        assert initial.TPU is None

    def test_unsorted_input(self, clean_curve):
        ci, a, tleaf, ppfd = clean_curve
        order = np.random.default_rng(1).permutation(len(ci))
        shuffled = estimate_initial_parameters(ci[order], a[order], tleaf[order], ppfd[order])
        initial = estimate_initial_parameters(ci, a, tleaf, ppfd)
        assert shuffled == initial

    def test_fit_tpu_adds_start(self, clean_curve):
        initial = estimate_initial_parameters(*clean_curve, fit_tpu=True)
        assert initial.TPU is not None and initial.TPU > 0

    def test_never_raises_on_poor_data(self):
        ci = np.array([400.0, 400.0, 400.0])
        a = np.array([np.nan, 3.0, 2.0])
        initial = estimate_initial_parameters(ci, a, np.full(3, 25.0), np.full(3, 1800.0))
        valid, _ = initial.is_valid()
        assert valid

    def test_refine_does_not_worsen(self, clean_curve):
        ci, a, tleaf, ppfd = clean_curve
        start = FitParameters(Vcmax=30.0, Jmax=240.0, Rd=1.5)
        refined = refine_on_grid(start, ci, a, tleaf, ppfd)

        def ss(p):
            return np.sum((a - calculate_assimilation(ci, tleaf, ppfd, p).An)**2)

        assert ss(refined) <= ss(start)
        assert refined.Rd == start.Rd

    def test_summary(self):
        summary = initial_guess_summary(TRUE_PARAMS)
        assert summary == {'Vcmax_start': 60.0, 'Jmax_start': 120.0, 'Rd_start': 1.5}

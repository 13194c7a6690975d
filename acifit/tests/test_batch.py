"""
Unit tests for batch processing functionality.

Tests the batch.py module including:
- AciFits container
- fit_acis validation, ordering and bilinear fallback
- Progress reporting
- Parameter variability analysis
"""

import pytest
import numpy as np
import pandas as pd

from acifit.core.data_structures import ExtendedDataFrame
from acifit.core.models import FitParameters
from acifit.core.photosynthesis import calculate_assimilation
from acifit.core.exceptions import FieldNotFound, InvalidGroupKey, EmptyGroup
from acifit.analysis.aci_fitting import fit_aci
from acifit.analysis.batch import (
    AciFits,
    fit_acis,
    analyze_parameter_variability,
    process_single_curve
)


def make_curve(name, params, n=8, noise=0.1, seed=0, **extra):
    rng = np.random.default_rng(seed)
    ci = np.linspace(60, 1400, n)
    a = calculate_assimilation(ci, 25.0, 1800.0, params).An
    df = pd.DataFrame({
        'Curve': name,
        'Ci': ci,
        'Assimilation': a + rng.normal(0, noise, size=n),
        'Tleaf': 25.0,
        'PPFD': 1800.0,
    })
    for key, value in extra.items():
        df[key] = value
    return df


@pytest.fixture
def leaf_data():
    """A well-sampled curve and a three-point curve."""
    leaf1 = make_curve('leaf1', FitParameters(Vcmax=60.0, Jmax=120.0, Rd=1.5), n=8, noise=0.05)
    leaf2 = pd.DataFrame({
        'Curve': 'leaf2',
        'Ci': [90.0, 350.0, 900.0],
        'Assimilation': [4.2, 13.9, 21.5],
        'Tleaf': 25.0,
        'PPFD': 1800.0,
    })
    return pd.concat([leaf1, leaf2], ignore_index=True)


@pytest.fixture
def three_curves():
    """Curves C, A, B in that order of appearance."""
    curves = [
        make_curve('C', FitParameters(Vcmax=50.0, Jmax=100.0, Rd=1.0), seed=1, Treatment='ambient'),
        make_curve('A', FitParameters(Vcmax=70.0, Jmax=130.0, Rd=1.2), seed=2, Treatment='elevated'),
        make_curve('B', FitParameters(Vcmax=60.0, Jmax=120.0, Rd=0.8), seed=3, Treatment='ambient'),
    ]
    return pd.concat(curves, ignore_index=True)


class TestAciFits:

    def test_mapping_behaviour(self, three_curves):
        fits = AciFits('Curve')
        result = fit_aci(three_curves[three_curves['Curve'] == 'A'])
        fits.add_result('A', result)

        assert len(fits) == 1
        assert fits['A'] is result
        assert 'A' in fits
        assert fits.by_index(0) is result
        assert fits.failed_groups == []

    def test_replace_keeps_position(self, three_curves):
        fits = AciFits('Curve')
        for name in ['C', 'A', 'B']:
            fits.add_result(name, fit_aci(three_curves[three_curves['Curve'] == name]))
        fits.add_result('A', fit_aci(three_curves[three_curves['Curve'] == 'A'], fitmethod='bilinear'))

        assert list(fits) == ['C', 'A', 'B']
        assert fits['A'].fitmethod == 'bilinear'


class TestValidation:

    def test_invalid_group_key(self, three_curves):
        with pytest.raises(InvalidGroupKey):
            fit_acis(three_curves, 'Leaf', quiet=True)

    def test_missing_id_field(self, three_curves):
        with pytest.raises(FieldNotFound, match="Genotype"):
            fit_acis(three_curves, 'Curve', id_fields=['Genotype'], quiet=True)

    def test_empty_group(self, three_curves):
        data = three_curves.copy()
        data['Curve'] = pd.Categorical(data['Curve'], categories=['A', 'B', 'C', 'D'])

        ticks = []
        with pytest.raises(EmptyGroup):
            fit_acis(data, 'Curve', quiet=True, progress=lambda i, n: ticks.append(i))
        # Nothing was fit
        assert ticks == []

    def test_unknown_fitmethod(self, three_curves):
        with pytest.raises(ValueError):
            fit_acis(three_curves, 'Curve', fitmethod='spline', quiet=True)

    @pytest.mark.parametrize("n_jobs", [0, -2, 1.5])
    def test_invalid_n_jobs(self, three_curves, n_jobs):
        ticks = []
        with pytest.raises(ValueError, match="n_jobs"):
            fit_acis(three_curves, 'Curve', quiet=True, n_jobs=n_jobs, progress=lambda i, n: ticks.append(i))
        assert ticks == []


class TestFitAcis:

    def test_order_preserved(self, three_curves):
        fits = fit_acis(three_curves, 'Curve', quiet=True)

        assert list(fits) == ['C', 'A', 'B']
        assert list(fits.coef()['Curve']) == ['C', 'A', 'B']
        assert fits.group_name == 'Curve'

    def test_all_succeed(self, three_curves):
        fits = fit_acis(three_curves, 'Curve', quiet=True)
        assert all(result.success for result in fits.values())
        assert np.isclose(fits['A'].parameters.Vcmax, 70.0, rtol=0.1)

    def test_leaf_scenario(self, leaf_data):
        """The short curve fails the nonlinear fit and is refit as bilinear."""
        fits = fit_acis(leaf_data, 'Curve', quiet=True)

        assert list(fits) == ['leaf1', 'leaf2']
        assert fits['leaf1'].fitmethod == 'nonlinear'
        assert fits['leaf1'].rmse < 0.5
        assert fits['leaf2'].success
        assert fits['leaf2'].fitmethod == 'bilinear'
        assert fits.failed_groups == ['leaf2']
        assert fits.unfit_groups == []

        coef = fits.coef()
        assert len(coef) == 2
        assert list(coef['Curve']) == ['leaf1', 'leaf2']
        assert list(coef['fitmethod']) == ['nonlinear', 'bilinear']

    def test_non_convergence_refit_with_bilinear(self, three_curves):
        fits = fit_acis(three_curves, 'Curve', quiet=True, max_nfev=3)

        assert fits.failed_groups == ['C', 'A', 'B']
        assert fits.unfit_groups == []
        assert set(fits.fitmethods.values()) == {'bilinear'}
        assert list(fits) == ['C', 'A', 'B']

    def test_failed_groups_reported(self, leaf_data, capsys):
        fit_acis(leaf_data, 'Curve', progress_bar=False)
        out = capsys.readouterr().out
        assert "could not be fit" in out
        assert "leaf2" in out

    def test_quiet(self, leaf_data, capsys):
        fit_acis(leaf_data, 'Curve', quiet=True)
        assert capsys.readouterr().out == ""

    def test_bilinear_method(self, leaf_data):
        fits = fit_acis(leaf_data, 'Curve', fitmethod='bilinear', quiet=True)
        assert set(fits.fitmethods.values()) == {'bilinear'}

    def test_default_alias(self, leaf_data):
        fits = fit_acis(leaf_data, 'Curve', fitmethod='default', quiet=True)
        assert fits['leaf1'].fitmethod == 'nonlinear'

    def test_progress_ticks(self, leaf_data):
        """One tick per group in the first pass only."""
        ticks = []
        fit_acis(leaf_data, 'Curve', quiet=True, progress=lambda i, n: ticks.append((i, n)))
        assert ticks == [(1, 2), (2, 2)]

    def test_id_fields_first_row(self, three_curves):
        data = three_curves.copy()
        # Inconsistent within curve B: the first row wins
        first_b = data.index[data['Curve'] == 'B'][0]
        data.loc[first_b + 1, 'Treatment'] = 'elevated'

        fits = fit_acis(data, 'Curve', id_fields=['Treatment'], quiet=True)
        assert fits['B'].id_values == {'Treatment': 'ambient'}
        assert list(fits.coef()['Treatment']) == ['ambient', 'elevated', 'ambient']

    def test_extended_dataframe_input(self, three_curves):
        fits = fit_acis(ExtendedDataFrame(three_curves), 'Curve', quiet=True)
        assert len(fits) == 3

    def test_fit_kwargs_passed(self, three_curves):
        fits = fit_acis(three_curves, 'Curve', quiet=True, fixed_parameters={'Rd': 1.0})
        assert all(result.parameters.Rd == 1.0 for result in fits.values())

    def test_coef_tcorrect(self, three_curves):
        fits = fit_acis(three_curves, 'Curve', quiet=True)
        plain = fits.coef()
        corrected = fits.coef(tcorrect=True)
        # Measured at 25°C, so the normalization changes nothing
        np.testing.assert_allclose(plain['Vcmax'], corrected['Vcmax'])

    def test_parallel_preserves_order(self, leaf_data, three_curves):
        data = pd.concat([three_curves, leaf_data], ignore_index=True)
        fits = fit_acis(data, 'Curve', quiet=True, n_jobs=2)

        assert list(fits) == ['C', 'A', 'B', 'leaf1', 'leaf2']
        assert fits['leaf2'].fitmethod == 'bilinear'
        sequential = fit_acis(data, 'Curve', quiet=True)
        for key in fits:
            assert fits[key].parameters == sequential[key].parameters


class TestHelpers:

    def test_process_single_curve(self, three_curves):
        curve = three_curves[three_curves['Curve'] == 'C']
        curve_id, result = process_single_curve(curve, 'C', 'nonlinear', {})
        assert curve_id == 'C'
        assert result.success

    def test_analyze_parameter_variability(self, three_curves):
        fits = fit_acis(three_curves, 'Curve', quiet=True)
        stats = analyze_parameter_variability(fits)

        assert list(stats['parameter']) == ['Vcmax', 'Jmax', 'Rd']
        assert (stats['n_curves'] == 3).all()
        assert (stats['min'] <= stats['mean']).all()

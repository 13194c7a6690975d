
import pandas as pd
import numpy as np
from typing import Dict, List, Optional, Union, Callable, Any, Tuple, Hashable, Iterator
from collections.abc import Mapping
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import replace
from tqdm import tqdm
import multiprocessing

from ..core.data_structures import ExtendedDataFrame, as_extended
from ..core.models import PARAMETER_NAMES
from .aci_fitting import fit_aci, normalize_fitmethod, FitResult

ProgressSink = Callable[[int, int], None]


class TqdmProgress:
    """Progress sink drawing a tqdm bar; call `close()` when done."""

    def __init__(self, desc: str = "Fitting curves"):
        self.desc = desc
        self._bar = None

    def __call__(self, current: int, total: int) -> None:
        if self._bar is None:
            self._bar = tqdm(total=total, desc=self.desc)
        self._bar.update(current - self._bar.n)

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None


class AciFits(Mapping):
    """
    Fit results of a batch, keyed by group value in first-appearance order.

    Attributes:
        group_name: Name of the column the data were grouped by
        id_fields: Columns whose first-row values are attached to each fit
        failed_groups: Groups whose first-pass fit failed
    """

    def __init__(
        self,
        group_name: str,
        id_fields: Optional[List[str]] = None,
        failed_groups: Optional[List[Hashable]] = None
    ):
        self.group_name = group_name
        self.id_fields = list(id_fields or [])
        self.failed_groups = list(failed_groups or [])
        self._results: Dict[Hashable, FitResult] = {}

    def add_result(self, key: Hashable, result: FitResult) -> None:
        """Add or replace the result of a group; replacing keeps its position."""
        self._results[key] = result

    def __getitem__(self, key: Hashable) -> FitResult:
        return self._results[key]

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def by_index(self, i: int) -> FitResult:
        """Result of the i-th group."""
        return list(self._results.values())[i]

    @property
    def unfit_groups(self) -> List[Hashable]:
        """Groups without a successful fit."""
        return [key for key, result in self._results.items() if not result.success]

    @property
    def fitmethods(self) -> Dict[Hashable, str]:
        return {key: result.fitmethod for key, result in self._results.items()}

    def coef(self, tcorrect: bool = False) -> pd.DataFrame:
        """
        Coefficients table, one row per group in group order.

        Args:
            tcorrect: Report Vcmax and Jmax normalized to 25°C

        Returns:
            DataFrame with the group column, Vcmax, Jmax, Rd, TPU (if fitted),
            RMSE, fitmethod and the id fields
        """
        rows = []
        for key, result in self._results.items():
            row = {self.group_name: key}
            row.update(result.coefficients(tcorrect=tcorrect))
            for name in self.id_fields:
                row[name] = result.id_values.get(name)
            rows.append(row)

        columns = [self.group_name] + [
            name for name in PARAMETER_NAMES
            if any(name in row for row in rows)
        ] + ['RMSE', 'fitmethod'] + self.id_fields
        return pd.DataFrame(rows, columns=columns)

    def __repr__(self) -> str:
        n_bilinear = sum(1 for m in self.fitmethods.values() if m == 'bilinear')
        return (
            f"AciFits with {len(self)} curves grouped by '{self.group_name}' "
            f"({n_bilinear} bilinear, {len(self.unfit_groups)} failed)"
        )


def process_single_curve(
    curve_data: Union[ExtendedDataFrame, pd.DataFrame],
    curve_id: Hashable,
    fitmethod: str,
    fit_kwargs: Dict[str, Any]
) -> Tuple[Hashable, FitResult]:
    """
    Fit one curve of a batch.

    Module-level so it can be sent to worker processes. Per-curve numerical
    failures come back as a FitFailure.
    """
    return curve_id, fit_aci(curve_data, fitmethod=fitmethod, **fit_kwargs)


def _first_row_values(curve: ExtendedDataFrame, id_fields: List[str]) -> Dict[str, Any]:
    values = {}
    for name in id_fields:
        value = curve.column(name).iloc[0] if len(curve) else None
        if isinstance(value, np.generic):
            value = value.item()
        values[name] = value
    return values


def _fit_pass(
    curves: Dict[Hashable, ExtendedDataFrame],
    fitmethod: str,
    fit_kwargs: Dict[str, Any],
    n_jobs: int,
    progress: Optional[ProgressSink]
) -> Dict[Hashable, FitResult]:
    """Fit every curve once, returning results in the order of `curves`."""
    total = len(curves)
    results = {}

    if n_jobs == 1:
        for i, (curve_id, curve) in enumerate(curves.items(), start=1):
            _, results[curve_id] = process_single_curve(curve, curve_id, fitmethod, fit_kwargs)
            if progress is not None:
                progress(i, total)
    else:
        with ProcessPoolExecutor(max_workers=n_jobs) as executor:
            futures = {
                executor.submit(process_single_curve, curve, curve_id, fitmethod, fit_kwargs): curve_id
                for curve_id, curve in curves.items()
            }
            for done, future in enumerate(as_completed(futures), start=1):
                curve_id, result = future.result()
                results[curve_id] = result
                if progress is not None:
                    progress(done, total)

    # Completion order is arbitrary in the parallel case
    return {curve_id: results[curve_id] for curve_id in curves}


def resolve_n_jobs(n_jobs: int) -> int:
    """Number of worker processes; -1 means one per CPU."""
    if n_jobs == -1:
        return multiprocessing.cpu_count()
    if not isinstance(n_jobs, (int, np.integer)) or n_jobs < 1:
        raise ValueError(f"n_jobs must be a positive integer or -1, got {n_jobs!r}")
    return int(n_jobs)


def fit_acis(
    data: Union[pd.DataFrame, ExtendedDataFrame],
    group: str,
    fitmethod: str = 'nonlinear',
    id_fields: Optional[List[str]] = None,
    progress_bar: bool = True,
    progress: Optional[ProgressSink] = None,
    quiet: bool = False,
    n_jobs: int = 1,
    **fit_kwargs
) -> AciFits:
    """
    Fit many A-Ci curves, one per value of a grouping column.

    Curves that the nonlinear method cannot fit are refit with the bilinear
    method, so every group of the result holds a successful fit; the
    `fitmethod` of each result shows which method produced it.

    Args:
        data: Multi-curve data
        group: Column that identifies the curves
        fitmethod: 'nonlinear' (alias 'default') or 'bilinear'
        id_fields: Columns to carry into the results; the value of each
            curve's first row is used
        progress_bar: Show a tqdm bar when no `progress` sink is given
        progress: Callable receiving (current, total) once per curve of the
            first pass
        quiet: Suppress printed messages and the default progress bar
        n_jobs: Number of worker processes for the first pass (-1 for all CPUs)
        **fit_kwargs: Passed to fit_aci (column names, fixed_parameters, ...)

    Returns:
        AciFits keyed by group value in order of first appearance

    Raises:
        InvalidGroupKey: If `group` is not a column
        FieldNotFound: If an id field, Ci or assimilation column is missing
        EmptyGroup: If a group (unused category) has no rows
        ValueError: If fitmethod or n_jobs is invalid
    """
    method = normalize_fitmethod(fitmethod)
    id_fields = list(id_fields or [])
    n_jobs = resolve_n_jobs(n_jobs)

    exdf = as_extended(data)
    curves = exdf.split_by(group)
    exdf.check_required_variables(id_fields)
    exdf.check_required_variables([
        fit_kwargs.get('ci_column', 'Ci'),
        fit_kwargs.get('a_column', 'Assimilation')
    ])

    sink = progress
    if sink is None and progress_bar and not quiet:
        sink = TqdmProgress()

    try:
        results = _fit_pass(curves, method, fit_kwargs, n_jobs, sink)
    finally:
        if isinstance(sink, TqdmProgress):
            sink.close()

    failed = [curve_id for curve_id, result in results.items() if not result.success]

    if failed and method == 'nonlinear':
        if not quiet:
            print(f"The following groups could not be fit with fitmethod='{method}':")
            print("\n".join(str(curve_id) for curve_id in failed))
            print("Fitting those curves with fitmethod='bilinear'.")

        refits = _fit_pass(
            {curve_id: curves[curve_id] for curve_id in failed},
            'bilinear', fit_kwargs, n_jobs=1, progress=None
        )
        results.update(refits)

    fits = AciFits(group, id_fields, failed_groups=failed)
    for curve_id, result in results.items():
        if id_fields:
            result = replace(result, id_values=_first_row_values(curves[curve_id], id_fields))
        fits.add_result(curve_id, result)

    if not quiet:
        print(f"\nBatch fitting complete:")
        print(f"  Total curves: {len(fits)}")
        if method == 'nonlinear':
            print(f"  Refit with bilinear: {len(failed)}")
        print(f"  Failed: {len(fits.unfit_groups)}")

    return fits


def analyze_parameter_variability(
    fits: AciFits,
    parameters: Optional[List[str]] = None,
    tcorrect: bool = False
) -> pd.DataFrame:
    """
    Analyze parameter variability across batch results.

    Args:
        fits: Results from fit_acis
        parameters: List of parameters to analyze (None for all fitted ones)
        tcorrect: Use parameters normalized to 25°C

    Returns:
        DataFrame with parameter statistics including mean, std, CV%, min, max, and n

    Example:
        >>> fits = fit_acis(data, 'Curve')
        >>> stats = analyze_parameter_variability(fits, ['Vcmax', 'Jmax'])
    """
    df = fits.coef(tcorrect=tcorrect)

    if parameters is None:
        parameters = [name for name in PARAMETER_NAMES if name in df.columns]

    stats_data = []
    for param in parameters:
        if param in df.columns:
            param_data = df[param].dropna()

            stats = {
                'parameter': param,
                'mean': param_data.mean(),
                'std': param_data.std(),
                'cv': param_data.std() / param_data.mean() * 100 if param_data.mean() != 0 else np.nan,
                'min': param_data.min(),
                'max': param_data.max(),
                'n_curves': len(param_data)
            }
            stats_data.append(stats)

    return pd.DataFrame(stats_data)

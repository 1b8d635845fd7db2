import dataclasses
import logging
import typing

import joblib
import numpy as np
import pandas as pd
import pmdarima.model_selection as pm_modsel
import scipy.stats as stats
import statsmodels.tsa.stattools as tsa

import price_forecast.diagnostics as diag
from price_forecast.data import TransformedSeries, as_transformed
from price_forecast.errors import InvalidSpecError, NonConvergenceError
from price_forecast.models import FittedModel, ModelSpec, fit

logger = logging.getLogger(__name__)

DEFAULT_HORIZON = 4
DEFAULT_START_FRACTION = 0.70
SIGNIFICANCE = 0.05
MIN_ERRORS = 2


def information_criteria(models: typing.Iterable[FittedModel]) -> pd.DataFrame:
    """
    In-sample comparison table, sorted by AIC (lower is better)
    """
    table = pd.concat([diag.get_diagnostics_df(m) for m in models], axis=0)
    return table.sort_values("AIC").reset_index(drop=True)


def origin_start(n: int, start_fraction: float = DEFAULT_START_FRACTION) -> int:
    # Round half up, python's round() is banker's rounding
    return int(np.floor(start_fraction * n + 0.5))


def _origin_error(
        series: TransformedSeries,
        spec: ModelSpec,
        train_idx: np.ndarray,
        test_idx: np.ndarray,
        maxiter: int
) -> float:
    history = dataclasses.replace(series, values=series.values.iloc[train_idx])
    try:
        fitted = fit(history, spec, maxiter=maxiter)
    except NonConvergenceError as exc:
        logger.warning("Skipping origin %s for %s: %s", series.values.index[train_idx[-1]], spec.label, exc)
        return np.nan

    horizon = test_idx.shape[0]
    pred = np.asarray(fitted.results.forecast(steps=horizon))[-1]
    return float(series.values.iloc[test_idx[-1]] - pred)


def rolling_origin_errors(
        series: pd.Series | TransformedSeries,
        spec: ModelSpec,
        horizon: int = DEFAULT_HORIZON,
        start: int | None = None,
        start_fraction: float = DEFAULT_START_FRACTION,
        maxiter: int = 200,
        n_jobs: int = 1
) -> pd.Series:
    """
    Rolling-origin `horizon`-step-ahead forecast errors.

    For every origin i = start..N-horizon the model is refitted on the first i observations and the
    error `actual[i + horizon] - forecast` (1-based) is recorded, giving N - horizon - start + 1 errors.
    Origins whose fit does not converge are recorded as NaN.
    Errors are on the scale the model is fitted on (log prices for a log-transformed series).

    :param start: number of observations of the first training window, round(start_fraction * N) if not provided
    :param n_jobs: number of parallel fits (joblib), origins are independent
    :return: errors indexed by the period they target
    """
    series = as_transformed(series)
    n = series.values.shape[0]
    start = origin_start(n, start_fraction) if start is None else start

    if horizon < 1:
        raise InvalidSpecError(f"Evaluation horizon must be >= 1, got {horizon}")
    if start > n - horizon:
        raise ValueError(f"No forecast origin: start={start} leaves less than horizon={horizon} samples out of {n}")
    if start <= spec.min_observations:
        raise InvalidSpecError(f"{spec.label} needs more than {spec.min_observations} observations, first origin has {start}")

    # Expanding window with step 1, i.e. train is always [0, i) and test [i, i + horizon)
    cv = pm_modsel.RollingForecastCV(h=horizon, step=1, initial=start)
    splits = list(cv.split(series.values.to_numpy()))

    logger.info("Rolling-origin evaluation of %s over %d origins (h=%d)", spec.label, len(splits), horizon)
    errors = joblib.Parallel(n_jobs=n_jobs)(
        joblib.delayed(_origin_error)(series, spec, train_idx, test_idx, maxiter)
        for train_idx, test_idx in splits
    )

    index = series.values.index[[test_idx[-1] for _, test_idx in splits]]
    return pd.Series(errors, index=index, name=spec.label, dtype=float)


def error_summary(errors: typing.Dict[str, pd.Series]) -> pd.DataFrame:
    """
    Absolute error statistics for each model's rolling-origin errors
    """
    rows = []
    for label, err in errors.items():
        abs_err = err.dropna().abs()
        rows.append({
            "model": label,
            "mean_abs_error": abs_err.mean(),
            "median_abs_error": abs_err.median(),
            "max_abs_error": abs_err.max(),
            "n_errors": int(abs_err.shape[0]),
            "n_missing": int(err.isna().sum())
        })
    return pd.DataFrame.from_records(rows).sort_values("mean_abs_error").reset_index(drop=True)


@dataclasses.dataclass(frozen=True)
class DieboldMarianoResult:
    statistic: float
    p_value: float
    horizon: int
    power: float
    n: int

    def significant(self, threshold: float = SIGNIFICANCE) -> bool:
        """True if the null of equal forecast accuracy is rejected"""
        return self.p_value <= threshold


def diebold_mariano(
        e1: pd.Series | np.ndarray,
        e2: pd.Series | np.ndarray,
        horizon: int = DEFAULT_HORIZON,
        power: float = 1
) -> DieboldMarianoResult:
    """
    Two-sided Diebold-Mariano test of equal forecast accuracy, with the Harvey, Leybourne & Newbold (1997)
    small-sample correction and a Student-t reference distribution with n-1 degrees of freedom.

    :param e1: forecast errors of the first model
    :param e2: forecast errors of the second model, same length as `e1`
    :param horizon: forecast horizon the errors were produced at; the long-run variance uses horizon-1 autocovariances
    :param power: loss is |e|^power, 1 for absolute error and 2 for squared error
    """
    e1, e2 = np.asarray(e1, dtype=float), np.asarray(e2, dtype=float)
    if e1.shape != e2.shape:
        raise ValueError(f"Error series must have the same length, got {e1.shape[0]} and {e2.shape[0]}")

    # Only origins where both models produced a forecast
    mask = ~(np.isnan(e1) | np.isnan(e2))
    d = np.abs(e1[mask]) ** power - np.abs(e2[mask]) ** power
    n = d.shape[0]
    if n < 2:
        raise ValueError(f"Need at least 2 paired forecast errors, got {n}")

    if np.allclose(d, 0):
        return DieboldMarianoResult(statistic=0.0, p_value=1.0, horizon=horizon, power=power, n=n)

    h = horizon
    gamma = tsa.acovf(d, nlag=h - 1, fft=False)
    variance = (gamma[0] + 2 * gamma[1:].sum()) / n
    if variance <= 0:
        if h == 1:
            raise ValueError("Variance of the loss differential is not positive")
        logger.warning("Non-positive long-run variance at horizon %d, falling back to horizon 1", h)
        return dataclasses.replace(diebold_mariano(e1[mask], e2[mask], horizon=1, power=power), horizon=horizon)

    statistic = d.mean() / np.sqrt(variance)
    statistic *= np.sqrt((n + 1 - 2 * h + h * (h - 1) / n) / n)
    p_value = 2 * stats.t.cdf(-abs(statistic), df=n - 1)

    return DieboldMarianoResult(statistic=float(statistic), p_value=float(p_value), horizon=horizon, power=power, n=n)


@dataclasses.dataclass(frozen=True, eq=False)
class ModelComparison:
    models: typing.Dict[str, FittedModel]
    information_criteria: pd.DataFrame
    errors: typing.Dict[str, pd.Series]
    error_summary: pd.DataFrame
    diebold_mariano: DieboldMarianoResult | None
    compared: typing.Tuple[str, ...]
    """Labels of the models the Diebold-Mariano test was run on"""
    selected: ModelSpec
    reason: str

    @property
    def selected_model(self) -> FittedModel:
        return self.models[self.selected.label]


def select_model(
        models: typing.Dict[str, FittedModel],
        summary: pd.DataFrame,
        dm: DieboldMarianoResult | None,
        significance: float = SIGNIFICANCE
) -> typing.Tuple[ModelSpec, str]:
    """
    Most accurate model out-of-sample if its advantage is significant,
    otherwise the simplest of the two most accurate ones (fewer parameters, then lower AIC)

    :param summary: error summary of the models that can be ranked, most accurate first
    """
    best = summary["model"].iloc[0]
    if summary.shape[0] == 1:
        return models[best].spec, "only candidate"
    if dm is None:
        return models[best].spec, "lowest mean absolute error, too few paired errors for Diebold-Mariano"
    if dm.significant(significance):
        return models[best].spec, f"lowest mean absolute error, significant (DM p-value={dm.p_value:.4f})"

    contenders = [models[label] for label in summary["model"].iloc[:2]]
    simplest = min(contenders, key=lambda m: (m.n_params, m.aic))
    return simplest.spec, (
        f"forecast accuracy not significantly different (DM p-value={dm.p_value:.4f}), "
        f"fewer parameters ({simplest.n_params})"
    )


def compare_models(
        series: pd.Series | TransformedSeries,
        specs: typing.Sequence[ModelSpec],
        horizon: int = DEFAULT_HORIZON,
        start: int | None = None,
        start_fraction: float = DEFAULT_START_FRACTION,
        power: float = 1,
        significance: float = SIGNIFICANCE,
        maxiter: int = 200,
        n_jobs: int = 1
) -> ModelComparison:
    """
    Compare candidate models in-sample (information criteria) and out-of-sample (rolling origin + Diebold-Mariano).
    Models with less than 2 forecast errors (non-converged origins) are kept in the tables but not ranked.
    """
    if len(specs) == 0:
        raise ValueError("No candidate model to compare")
    labels = [spec.label for spec in specs]
    if len(set(labels)) != len(labels):
        raise ValueError(f"Duplicate candidate models in {labels}")

    series = as_transformed(series)
    models = {spec.label: fit(series, spec, maxiter=maxiter) for spec in specs}

    errors = {
        spec.label: rolling_origin_errors(
            series, spec, horizon=horizon, start=start, start_fraction=start_fraction, maxiter=maxiter, n_jobs=n_jobs
        )
        for spec in specs
    }
    summary = error_summary(errors)

    ranked = summary[summary["n_errors"] >= MIN_ERRORS].reset_index(drop=True)
    for label in summary.loc[summary["n_errors"] < MIN_ERRORS, "model"]:
        logger.warning("Excluding %s from the comparison: %d forecast error(s) out of %d origins",
                       label, errors[label].notna().sum(), errors[label].shape[0])
    if ranked.shape[0] == 0:
        raise NonConvergenceError(f"No candidate produced at least {MIN_ERRORS} rolling-origin forecasts")

    dm, compared = None, (ranked["model"].iloc[0],)
    if ranked.shape[0] > 1:
        compared = tuple(ranked["model"].iloc[:2])
        e1, e2 = errors[compared[0]], errors[compared[1]]
        n_paired = int((e1.notna() & e2.notna()).sum())
        if n_paired >= MIN_ERRORS:
            dm = diebold_mariano(e1, e2, horizon=horizon, power=power)
            logger.info("Diebold-Mariano %s vs %s: statistic=%.4f p-value=%.4f", *compared, dm.statistic, dm.p_value)
        else:
            logger.warning("Only %d paired forecast errors for %s vs %s, skipping Diebold-Mariano", n_paired, *compared)

    selected, reason = select_model(models, ranked, dm, significance=significance)
    logger.info("Selected %s: %s", selected.label, reason)

    return ModelComparison(
        models=models,
        information_criteria=information_criteria(models.values()),
        errors=errors,
        error_summary=summary,
        diebold_mariano=dm,
        compared=compared,
        selected=selected,
        reason=reason
    )

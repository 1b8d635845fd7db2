import dataclasses
import itertools
import logging
import typing
import warnings

import numpy as np
import pandas as pd
import pmdarima as pm
import scipy.stats as stats
from statsmodels.tools.sm_exceptions import ConvergenceWarning
from statsmodels.tsa.statespace.sarimax import SARIMAX, SARIMAXResults

from price_forecast.data import TransformedSeries, as_transformed
from price_forecast.errors import InvalidSpecError, NonConvergenceError

logger = logging.getLogger(__name__)

TRENDS = ("n", "c", "t", "ct")

# Nelder-Mead needs many more iterations than L-BFGS
NM_MAXITER_FACTOR = 5


@dataclasses.dataclass(frozen=True)
class ModelSpec:
    order: typing.Tuple[int, int, int] = (1, 0, 0)
    seasonal_order: typing.Tuple[int, int, int] = (0, 0, 0)
    period: int = 0
    trend: str = "n"
    """statsmodels trend code: "n" none, "c" constant, "t" linear, "ct" both"""

    def __post_init__(self):
        # Normalize lists coming from json configs
        object.__setattr__(self, "order", tuple(int(o) for o in self.order))
        object.__setattr__(self, "seasonal_order", tuple(int(o) for o in self.seasonal_order))

        if len(self.order) != 3 or len(self.seasonal_order) != 3:
            raise InvalidSpecError(f"Orders must be (p, d, q) and (P, D, Q) triples, got {self.order} and {self.seasonal_order}")
        if any(o < 0 for o in self.order + self.seasonal_order) or self.period < 0:
            raise InvalidSpecError(f"Orders must be non-negative, got {self.label}")
        if any(o > 0 for o in self.seasonal_order) and self.period < 2:
            raise InvalidSpecError(f"Seasonal terms need a seasonal period >= 2, got period={self.period}")
        if self.trend not in TRENDS:
            raise InvalidSpecError(f"Unknown trend '{self.trend}', expected one of {TRENDS}")

    @property
    def is_seasonal(self) -> bool:
        return any(o > 0 for o in self.seasonal_order)

    @property
    def label(self) -> str:
        p, d, q = self.order
        label = f"({p},{d},{q})"
        if self.is_seasonal:
            P, D, Q = self.seasonal_order
            label = f"SARIMA{label}({P},{D},{Q})[{self.period}]"
        else:
            label = f"ARIMA{label}"
        return label if self.trend == "n" else f"{label} trend={self.trend}"

    @property
    def min_observations(self) -> int:
        """Series must be strictly longer than this for the orders to be estimable"""
        p, d, q = self.order
        P, D, Q = self.seasonal_order
        s = self.period
        return d + D * s + max(p + s * P, q + s * Q) + 1

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {
            "order": list(self.order),
            "seasonal_order": list(self.seasonal_order),
            "period": self.period,
            "trend": self.trend
        }

    @classmethod
    def from_dict(cls, d: typing.Dict[str, typing.Any]) -> "ModelSpec":
        unknown = set(d) - {"order", "seasonal_order", "period", "trend"}
        if len(unknown) > 0:
            raise InvalidSpecError(f"Unknown model spec keys {sorted(unknown)}")
        return cls(
            order=tuple(d.get("order", (1, 0, 0))),
            seasonal_order=tuple(d.get("seasonal_order", (0, 0, 0))),
            period=int(d.get("period", 0)),
            trend=d.get("trend", "n")
        )

    def __str__(self):
        return self.label


@dataclasses.dataclass(frozen=True, eq=False)
class FittedModel:
    spec: ModelSpec
    series: TransformedSeries
    results: SARIMAXResults

    @property
    def params(self) -> pd.Series:
        return self.results.params

    @property
    def bse(self) -> pd.Series:
        return self.results.bse

    @property
    def residuals(self) -> pd.Series:
        # The first d + D*s residuals come from the diffuse initialization and carry no information
        return self.results.resid[self.results.loglikelihood_burn:]

    @property
    def llf(self) -> float:
        return float(self.results.llf)

    @property
    def aic(self) -> float:
        return float(self.results.aic)

    @property
    def aicc(self) -> float:
        return float(self.results.aicc)

    @property
    def bic(self) -> float:
        return float(self.results.bic)

    @property
    def n_params(self) -> int:
        """Number of estimated parameters, noise variance included"""
        return len(self.results.params)

    @property
    def n_arma_terms(self) -> int:
        p, _, q = self.spec.order
        P, _, Q = self.spec.seasonal_order
        return p + q + P + Q

    def coefficients(self) -> pd.DataFrame:
        """
        Estimated coefficients with their standard errors.
        A coefficient is deemed significant (~5% level) when |coef| > 2 * std_err.
        """
        return pd.DataFrame({
            "coef": self.params,
            "std_err": self.bse,
            "significant": self.params.abs() > 2 * self.bse
        })

    def summary(self):
        return self.results.summary()


@dataclasses.dataclass(frozen=True, eq=False)
class ForecastResult:
    mean: pd.Series
    """Point forecasts on the model scale (log prices if the series was log-transformed)"""
    se: pd.Series
    """Standard errors on the model scale"""
    point: pd.Series
    lower: pd.Series
    upper: pd.Series
    horizon: int
    alpha: float = 0.05

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"point": self.point, "lower": self.lower, "upper": self.upper})


def _converged(res: SARIMAXResults) -> bool:
    return res.mle_retvals.get("converged", True) and np.isfinite(res.llf)


def fit(
        series: pd.Series | TransformedSeries,
        spec: ModelSpec,
        maxiter: int = 200
) -> FittedModel:
    """
    Maximum likelihood estimation of a SARIMA model with the given orders

    :param series: series to fit on. Differencing should be left to the `d`, `D` orders of the spec,
        so that forecasts come out on the same scale as the series
    :param spec: model orders
    :param maxiter: max number of optimizer iterations
    :return: fitted model
    """
    series = as_transformed(series)
    y = series.values
    if y.shape[0] <= spec.min_observations:
        raise InvalidSpecError(f"{spec.label} needs more than {spec.min_observations} observations, got {y.shape[0]}")

    try:
        model = SARIMAX(
            endog=y,
            order=spec.order,
            seasonal_order=(*spec.seasonal_order, spec.period),
            trend=spec.trend,
            enforce_stationarity=True,
            enforce_invertibility=True
        )
    except ValueError as exc:
        raise InvalidSpecError(f"Invalid model {spec.label}: {exc}") from exc

    with warnings.catch_warnings():
        # Convergence is checked explicitly below
        warnings.simplefilter("ignore", ConvergenceWarning)
        warnings.simplefilter("ignore", UserWarning)
        try:
            res: SARIMAXResults = model.fit(disp=False, maxiter=maxiter)
            if not _converged(res):
                # L-BFGS often stops on its line search right at the optimum, polish with Nelder-Mead
                logger.debug("L-BFGS did not converge for %s (%s), retrying with Nelder-Mead", spec.label, res.mle_retvals)
                res = model.fit(start_params=res.params, method="nm", disp=False, maxiter=NM_MAXITER_FACTOR * maxiter)
        except (np.linalg.LinAlgError, ValueError) as exc:
            raise NonConvergenceError(f"Estimation of {spec.label} failed: {exc}") from exc

    if not _converged(res):
        raise NonConvergenceError(f"Optimizer did not converge for {spec.label} (maxiter={maxiter})")

    logger.debug("Fitted %s on %d observations: llf=%.3f aic=%.3f", spec.label, y.shape[0], res.llf, res.aic)
    return FittedModel(spec=spec, series=series, results=res)


def forecast(model: FittedModel, horizon: int, alpha: float = 0.05) -> ForecastResult:
    """
    Forecast `horizon` steps after the end of the fitted series.
    Intervals are mean +- z * se on the model scale, mapped back to the original scale
    through the inverse of the series transform (exp for log).
    """
    if horizon < 1:
        raise InvalidSpecError(f"Forecast horizon must be >= 1, got {horizon}")
    if not (0 < alpha < 1):
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")

    pred = model.results.get_forecast(steps=horizon)
    mean: pd.Series = pred.predicted_mean
    se: pd.Series = pred.se_mean

    z = stats.norm.ppf(1 - alpha / 2)
    inverse = model.series.inverse

    return ForecastResult(
        mean=mean,
        se=se,
        point=inverse(mean),
        lower=inverse(mean - z * se),
        upper=inverse(mean + z * se),
        horizon=horizon,
        alpha=alpha
    )


def grid_search(
        series: pd.Series | TransformedSeries,
        p_range: typing.Iterable[int] = range(0, 3),
        q_range: typing.Iterable[int] = range(0, 3),
        d: int = 0,
        P_range: typing.Iterable[int] = (0,),
        Q_range: typing.Iterable[int] = (0,),
        D: int = 0,
        period: int = 0,
        trend: str = "n",
        criterion: str = "aic",
        maxiter: int = 200
) -> typing.Tuple[ModelSpec, pd.DataFrame]:
    """
    Fit every order combination and rank them by information criterion.
    Combinations that fail to fit are skipped.

    :param criterion: one of "aic", "aicc", "bic"
    :return: (best spec, table of every fitted candidate sorted by `criterion`, specs in the "spec" column)
    """
    if criterion not in ("aic", "aicc", "bic"):
        raise ValueError(f"Unknown criterion '{criterion}'")

    rows, seen = [], set()
    for p, q, P, Q in itertools.product(p_range, q_range, P_range, Q_range):
        spec = ModelSpec(order=(p, d, q), seasonal_order=(P, D, Q) if period > 1 else (0, 0, 0), period=period, trend=trend)
        if spec.label in seen:
            continue
        seen.add(spec.label)
        try:
            fitted = fit(series, spec, maxiter=maxiter)
        except (InvalidSpecError, NonConvergenceError) as exc:
            logger.info("Skipping %s: %s", spec.label, exc)
            continue

        rows.append({
            "model": spec.label,
            "spec": spec,
            "aic": fitted.aic,
            "aicc": fitted.aicc,
            "bic": fitted.bic,
            "params_count": fitted.n_params
        })

    if len(rows) == 0:
        raise NonConvergenceError("No candidate order could be fitted")

    table = pd.DataFrame.from_records(rows).sort_values(criterion).reset_index(drop=True)
    best = table.loc[0, "spec"]
    logger.info("Grid search over %d candidates selected %s (%s=%.3f)", table.shape[0], best.label, criterion, table.loc[0, criterion])
    return best, table


def auto_order(
        series: pd.Series | TransformedSeries,
        d: int = 0,
        D: int = 0,
        period: int = 0,
        max_p: int = 3,
        max_q: int = 3,
        max_P: int = 2,
        max_Q: int = 3,
        criterion: str = "aic",
        maxiter: int = 50
) -> ModelSpec:
    """
    Stepwise order search with pmdarima's auto_arima (Python's equivalent of R's `auto.arima`)
    """
    y = as_transformed(series).values
    seasonal = period > 1

    with pm.StepwiseContext(max_steps=50):
        arima: pm.ARIMA = pm.auto_arima(
            y=y,
            start_p=0, d=d, start_q=0, max_p=max_p, max_q=max_q,
            seasonal=seasonal, m=period if seasonal else 1, D=D if seasonal else None,
            start_P=0, start_Q=0, max_P=max_P, max_Q=max_Q,
            max_order=None,
            stationary=False,
            information_criterion=criterion,
            stepwise=True,
            error_action="ignore", suppress_warnings=True, trace=False,
            maxiter=maxiter
        )

    P, D_fit, Q, m = arima.seasonal_order
    spec = ModelSpec(
        order=arima.order,
        seasonal_order=(P, D_fit, Q) if seasonal else (0, 0, 0),
        period=m if seasonal else 0,
        trend="c" if arima.with_intercept is True else "n"
    )
    logger.info("auto_arima selected %s", spec.label)
    return spec

import dataclasses
import typing

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import scipy.stats as stats
import seaborn as sns
import sklearn.metrics as sk_metrics
import statsmodels.api as sm
import statsmodels.tsa.stattools as tsa
from statsmodels.stats.diagnostic import acorr_ljungbox

import price_forecast.visualization as vis
from price_forecast.data import TransformedSeries

if typing.TYPE_CHECKING:
    from price_forecast.models import FittedModel

WHITE_NOISE_THRESHOLD = 0.05


def _values(ts: pd.Series | TransformedSeries) -> pd.Series:
    return ts.values if isinstance(ts, TransformedSeries) else ts


def autocorrelation(ts: pd.Series | TransformedSeries, max_lag: int) -> np.ndarray:
    """
    :return: array whose element k-1 is the correlation between the series and its lag-k shift, k = 1..max_lag
    """
    ts = _values(ts)
    if not (1 <= max_lag < ts.shape[0] - 1):
        raise ValueError(f"max_lag must be in [1, {ts.shape[0] - 1}), got {max_lag}")
    return np.array([ts.autocorr(lag=lag) for lag in range(1, max_lag + 1)])


def partial_autocorrelation(ts: pd.Series | TransformedSeries, max_lag: int) -> np.ndarray:
    """
    Partial autocorrelations for lags 1..max_lag, estimated by regressing on the intermediate lags
    """
    ts = _values(ts)
    if not (1 <= max_lag < ts.shape[0] // 2):
        raise ValueError(f"max_lag must be in [1, {ts.shape[0] // 2}), got {max_lag}")
    return tsa.pacf(ts, nlags=max_lag, method="ols")[1:]


def significance_band(n: int, alpha: float = 0.05) -> float:
    """Half-width of the approximate white-noise band of the (P)ACF, i.e. 1.96/sqrt(n) at 5%"""
    return stats.norm.ppf(1 - alpha / 2) / np.sqrt(n)


def significant_lags(values: np.ndarray, n: int, alpha: float = 0.05) -> typing.List[int]:
    """
    :param values: (P)ACF values for lags 1..len(values)
    :param n: length of the series the values were computed on
    :return: lags whose value falls outside the significance band
    """
    band = significance_band(n, alpha)
    return [int(lag) for lag in np.flatnonzero(np.abs(values) > band) + 1]


@dataclasses.dataclass(frozen=True)
class LjungBoxResult:
    statistic: float
    p_value: float
    lags: int
    model_df: int = 0

    def is_white_noise(self, threshold: float = WHITE_NOISE_THRESHOLD) -> bool:
        # Null hypothesis is "autocorrelations up to `lags` are jointly zero"
        return self.p_value > threshold


def white_noise_test(ts: pd.Series | TransformedSeries, lags: int | None = None, model_df: int = 0) -> LjungBoxResult:
    """
    Ljung-Box portmanteau test

    :param lags: number of autocorrelations tested jointly, min(10, n // 5) if not provided
    :param model_df: number of estimated ARMA coefficients when testing model residuals,
        subtracted from the degrees of freedom of the chi-squared reference distribution
    """
    ts = _values(ts).dropna()
    if lags is None:
        lags = max(min(10, ts.shape[0] // 5), model_df + 1)
    if lags <= model_df:
        raise ValueError(f"Number of lags ({lags}) must exceed the model degrees of freedom ({model_df})")

    lb = acorr_ljungbox(ts, lags=[lags], model_df=model_df)
    return LjungBoxResult(
        statistic=float(lb["lb_stat"].iloc[0]),
        p_value=float(lb["lb_pvalue"].iloc[0]),
        lags=lags,
        model_df=model_df
    )


def residuals_white_noise_test(fitted: "FittedModel", lags: int | None = None) -> LjungBoxResult:
    """Ljung-Box on the model residuals, with degrees of freedom adjusted for the estimated ARMA terms"""
    if lags is None:
        lags = 2 * fitted.spec.period if fitted.spec.is_seasonal else 10
        lags = max(lags, fitted.n_arma_terms + 1)
    return white_noise_test(fitted.residuals, lags=lags, model_df=fitted.n_arma_terms)


def get_stationarity_df(ts: pd.Series) -> pd.DataFrame:
    return pd.DataFrame(
        [
            # first two elements of adfuller and kpss are statistic, p-value
            ["adfuller", *(tsa.adfuller(_values(ts))[:2])],
            ["kpss", *(tsa.kpss(_values(ts))[:2])],
        ],
        columns=["test", "statistic", "p-value"]
    )


def get_diagnostics_df(fitted: "FittedModel") -> pd.DataFrame:
    return pd.DataFrame.from_records([{
        "model": fitted.spec.label,
        "log_likelihood": fitted.llf,
        "AIC": fitted.aic,
        # Is AIC ever better than AICc?
        # https://stats.stackexchange.com/questions/319769/is-aicc-ever-worse-than-aic
        "AICc": fitted.aicc,
        "BIC": fitted.bic,
        "params_count": fitted.n_params
    }])


def get_forecast_error_df(test: pd.Series, forecast: pd.Series) -> pd.DataFrame:
    return pd.DataFrame.from_records([{
        "MAE": sk_metrics.mean_absolute_error(test, forecast),
        "RMSE": np.sqrt(sk_metrics.mean_squared_error(test, forecast)),
        "MAPE": sk_metrics.mean_absolute_percentage_error(test, forecast)
    }])


def residuals_diagnostics(fitted: np.ndarray, residuals: np.ndarray, lags: int = 30) -> plt.Figure:
    fig, ax = plt.subplots(2, 2, figsize=(20, 16))

    # 1. Residuals vs Fitted
    sns.scatterplot(x=fitted, y=residuals, ax=ax[0, 0])
    ax[0, 0].axhline(0, linestyle='--', color='r')
    ax[0, 0].set_title('Residuals vs Fitted')
    ax[0, 0].set_xlabel('Fitted values')
    ax[0, 0].set_ylabel('Residuals')

    # 2. Histogram (or KDE) of Residuals
    sns.histplot(residuals, kde=True, ax=ax[0, 1])
    ax[0, 1].set_title('Histogram of Residuals')

    # 3. Q-Q plot
    sm.qqplot(np.asarray(residuals), line='s', ax=ax[1, 0])
    ax[1, 0].set_title('Q-Q Plot')

    # 4. ACF plot of residuals
    sm.graphics.tsa.plot_acf(residuals, lags=min(lags, len(residuals) // 2 - 1), ax=ax[1, 1])
    ax[1, 1].set_title('ACF of Residuals')

    fig.tight_layout()
    return fig


def fitted_model_diagnostics(fitted: "FittedModel") -> plt.Figure:
    burn = fitted.results.loglikelihood_burn
    return residuals_diagnostics(
        fitted=np.asarray(fitted.results.fittedvalues[burn:]),
        residuals=np.asarray(fitted.residuals)
    )


def plot_predictions(
        train: pd.Series,
        test: pd.Series,
        forecast: pd.Series,
        forecast_confint: typing.Tuple[pd.Series, pd.Series] = None,
) -> plt.Figure:
    """
    Plots the train time series and the forecasts against the actual values they targeted.

    :param train: the actual training data
    :param test: the actual test data
    :param forecast: the forecasted values, aligned with `test`
    :param forecast_confint: optional, the (lower, upper) confidence bounds for the forecast
    :return: figure
    """
    train, test, forecast = (vis._to_timestamp_index(s) for s in (train, test, forecast))

    fig, ax = plt.subplots(figsize=vis.DEFAULT_FIG_SIZE)
    sns.lineplot(ax=ax, x=train.index, y=train.values, label='Train', color='skyblue')
    sns.lineplot(ax=ax, x=test.index, y=test.values, label='Forecast Actual', color='indianred')
    sns.lineplot(ax=ax, x=test.index, y=forecast.values, label='Forecast', color='orange')

    if forecast_confint is not None:
        ax.fill_between(test.index,
                        np.asarray(forecast_confint[0]),
                        np.asarray(forecast_confint[1]),
                        color='orange', alpha=0.3, label='Forecast Conf. Int.')

    ax.set_xlabel('Date')
    ax.set_ylabel('Value')
    ax.set_title('Predictions')

    return fig


def plot_rolling_origin_predictions(fitted: "FittedModel", errors: pd.Series) -> plt.Figure:
    """
    Rolling-origin forecasts against the actual values they targeted, on the original scale.
    Forecasts are recovered from the errors, which are on the scale the model was fitted on.

    :param fitted: model fitted on the full series
    :param errors: output of `evaluation.rolling_origin_errors` for the same model
    """
    errors = errors.dropna()
    ts = fitted.series
    targeted = ts.values.loc[errors.index]

    return plot_predictions(
        train=ts.inverse(ts.values[ts.values.index < errors.index[0]]),
        test=ts.inverse(targeted),
        forecast=ts.inverse(targeted - errors)
    )

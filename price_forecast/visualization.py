import typing

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pandas.plotting as pd_plt
import seaborn as sns
import statsmodels.graphics.tsaplots as tsa_plt
import statsmodels.tsa.seasonal as tsa_season

if typing.TYPE_CHECKING:
    from price_forecast.models import ForecastResult

DEFAULT_FIG_SIZE = (12, 8)


def _to_timestamp_index(ts: pd.Series) -> pd.Series:
    # Required else plot breaks
    if isinstance(ts.index, pd.PeriodIndex):
        ts = ts.copy()
        ts.index = ts.index.to_timestamp()
    return ts


def plot_ts(ts: pd.Series, title: str = "Time series") -> plt.Figure:
    ax = _to_timestamp_index(ts).plot(figsize=DEFAULT_FIG_SIZE)
    ax.figure.suptitle(title)
    return ax.figure


def plot_time_series_with_rolling_stats(ts: pd.Series, k: int, ts_name: str = "") -> plt.Figure:
    """
    Plots the original time series along with its rolling mean and rolling std.

    :param ts: The time series data with a PeriodIndex.
    :param k: The window size for computing the rolling statistics.
    :param ts_name: label for the time series
    :return: figure
    """
    ts = _to_timestamp_index(ts)

    rolling_mean = ts.rolling(window=k).mean().dropna()
    rolling_std = ts.rolling(window=k).std().dropna()

    fig, ax = plt.subplots(figsize=DEFAULT_FIG_SIZE)
    name = ts_name if len(ts_name) > 0 else 'Time Series'
    ax.set_title(f"{name} with Rolling Mean and Std")
    ax.set_xlabel('Time')
    ax.set_ylabel('Value')
    sns.lineplot(ax=ax, data=ts, label=ts_name)
    sns.lineplot(ax=ax, data=rolling_mean, label=f'Rolling Mean (window={k})')
    sns.lineplot(ax=ax, data=rolling_std, label=f'Rolling Std (window={k})')

    return fig


def plot_ts_decomposition(
        ts: pd.Series,
        expected_seasonality: int,
        seasonal_smoother_length: int = 7,
        stl: bool = True,
) -> plt.Figure:
    """
    Performs either STL or MA-based (additive) decomposition, based on the specified flag.

    :param ts: time series
    :param expected_seasonality: period/seasonality of the ts
    :param seasonal_smoother_length: odd length of the STL seasonal smoother
    :param stl: whether to go with STL or MA-based decomposition
    :return:
    """
    ts = _to_timestamp_index(ts)

    if stl:
        res = tsa_season.STL(ts, period=expected_seasonality, seasonal=seasonal_smoother_length).fit()
        fig = res.plot()
        fig.suptitle(f"STL decomposition - Seasonality={expected_seasonality}")
    else:
        fig = tsa_season.seasonal_decompose(ts, model='additive', period=expected_seasonality).plot()
        fig.suptitle(f"MA-based decomposition - Seasonality={expected_seasonality}")

    fig.set_size_inches(DEFAULT_FIG_SIZE)
    return fig


def plot_annual_season_boxplots(ts: pd.Series) -> plt.Figure:
    seasons_data = {}
    for month in range(1, 13):
        seasons_data[f'Month {month}'] = ts[ts.index.month == month].values

    fig, ax = plt.subplots(figsize=DEFAULT_FIG_SIZE)
    sns.boxplot(ax=ax, data=seasons_data)

    ax.set_title('Annual seasonality boxplots (monthly distributions)')
    ax.set_xlabel('Month')
    ax.set_ylabel('Value')

    return fig


def plot_acf_pacf(ts: pd.Series, expected_seasonality: int, lags: int | None = None) -> plt.Figure:
    """
    :param ts:
    :param expected_seasonality: determines the number of lags shown in the first ACF plot,
        which is a zoomed-out version to help detect seasonality or other long-term patterns
    :param lags: lags of the zoomed-in ACF/PACF plots, library default if not provided
    :return:
    """
    fig, axs = plt.subplots(nrows=3, ncols=1, figsize=(16, 24))

    expected_seasonality = 10 if expected_seasonality == 1 else expected_seasonality

    zoomed_out_lags = min(expected_seasonality * 3, ts.shape[0] // 2 - 1)
    tsa_plt.plot_acf(ts, ax=axs[0], lags=zoomed_out_lags, auto_ylims=True)
    _, xlim_high = axs[0].get_xlim()
    axs[0].set_xticks(np.arange(0, xlim_high, max(expected_seasonality // 2, 1)))

    tsa_plt.plot_acf(ts, ax=axs[1], lags=lags, auto_ylims=True)
    tsa_plt.plot_pacf(ts, ax=axs[2], lags=lags, method="ols", auto_ylims=True)

    return fig


def plot_top_k_autocorr_lags(ts: pd.Series, k: int = 10, max_lag: int = 48) -> plt.Figure:
    max_lag = min(max_lag, ts.shape[0] - 2)
    acf_res = np.array([ts.autocorr(lag=lag) for lag in range(1, max_lag + 1)])

    # acf_res[0] is lag 1
    top_lags = np.argsort(-np.abs(acf_res))[:k] + 1
    top_autocorr = pd.DataFrame({
        "lag": top_lags,
        "autocorr": acf_res[top_lags - 1]
    })

    # The first chart of the grid is the autocorr barplot
    nrows, ncols = len(top_lags) // 2 + 1, 2
    fig, axs = plt.subplots(nrows, ncols, figsize=(ncols*10, nrows*5))
    fig.suptitle(f"Top {k} autocorrelation lags")

    sns.barplot(ax=axs[0, 0], data=top_autocorr, x="lag", y="autocorr", color="skyblue")

    for i, lag in enumerate(top_lags):
        i += 1  # because first axes is occupied by the top-autocorr chart
        pd_plt.lag_plot(ts, ax=axs[i // ncols, i % ncols], lag=int(lag))

    return fig


def ts_eda(
        ts: pd.Series,
        ts_name: str,
        expected_seasonality: int,
        ts_plot: bool = True,
        rolling_stats_plot: bool = True,
        season_boxplots: bool = True,
        ts_decomposition: bool = True,
        acf_pacf_plots: bool = True,
        top_k_autocorr_plots: bool = True,
) -> typing.List[plt.Figure]:
    """
    Collection of plots for the provided time series. Can enable/disable any of them by providing the appropriate boolean

    :return: the figures, in the order they were drawn
    """
    figs = []

    if ts_plot:
        figs.append(plot_ts(ts, title=ts_name))

    if rolling_stats_plot:
        # One year window for monthly data
        figs.append(plot_time_series_with_rolling_stats(ts=ts, k=max(expected_seasonality, 2), ts_name=ts_name))

    if season_boxplots:
        figs.append(plot_annual_season_boxplots(ts))

    if ts_decomposition:
        figs.append(plot_ts_decomposition(ts, expected_seasonality=expected_seasonality, stl=True))
        figs.append(plot_ts_decomposition(ts, expected_seasonality=expected_seasonality, stl=False))

    if acf_pacf_plots:
        figs.append(plot_acf_pacf(ts, expected_seasonality=expected_seasonality))

    if top_k_autocorr_plots:
        figs.append(plot_top_k_autocorr_lags(ts, k=10))

    return figs


def plot_forecast(
        history: pd.Series,
        forecast: "ForecastResult",
        title: str = "Forecast",
        last_n: int | None = 60
) -> plt.Figure:
    """
    Fan chart of the forecast on the original price scale

    :param history: observed series, original scale
    :param forecast: output of `models.forecast`
    :param last_n: number of trailing history observations to show, all if None
    """
    history = _to_timestamp_index(history if last_n is None else history[-last_n:])
    point, lower, upper = (_to_timestamp_index(s) for s in (forecast.point, forecast.lower, forecast.upper))

    fig, ax = plt.subplots(figsize=DEFAULT_FIG_SIZE)
    sns.lineplot(ax=ax, x=history.index, y=history.values, label='Observed', color='skyblue')
    sns.lineplot(ax=ax, x=point.index, y=point.values, label='Forecast', color='orange', marker='o')
    ax.fill_between(point.index, lower.values, upper.values, color='orange', alpha=0.3,
                    label=f'{(1 - forecast.alpha) * 100:.0f}% Conf. Int.')

    ax.set_xlabel('Date')
    ax.set_ylabel('Price')
    ax.set_title(title)
    ax.legend()

    return fig

import logging
import pathlib
import typing

import pandas as pd

import price_forecast.diagnostics as diag
import price_forecast.evaluation as ev
import price_forecast.models as mod
from price_forecast.config import ForecastConfig
from price_forecast.data import TransformedSeries, build_series, difference, load_records, log_transform, truncate
from price_forecast.report import Report, save_report

logger = logging.getLogger(__name__)


def identification_series(log: TransformedSeries, differencing: int, seasonal_differencing: int, period: int) -> TransformedSeries:
    """Log series differenced the way the candidate models integrate it"""
    ts = log
    for _ in range(differencing):
        ts = difference(ts, lag=1)
    if period > 1:
        for _ in range(seasonal_differencing):
            ts = difference(ts, lag=period)
    return ts


def search_candidates(log: TransformedSeries, config: ForecastConfig) -> typing.Tuple[typing.List[mod.ModelSpec], pd.DataFrame | None]:
    d, D, s = config.differencing, config.seasonal_differencing, config.seasonal_period
    if s <= 1:
        D = 0
    # A constant only makes sense if the model does not integrate the series
    trend = "c" if d + D == 0 else "n"

    if config.order_search == "auto_arima":
        return [mod.auto_order(log, d=d, D=D, period=s, max_p=config.max_p, max_q=config.max_q,
                               max_P=config.max_P, max_Q=config.max_Q)], None

    _, table = mod.grid_search(
        log,
        p_range=range(config.max_p + 1), q_range=range(config.max_q + 1), d=d,
        P_range=range(config.max_P + 1), Q_range=range(config.max_Q + 1), D=D,
        period=s, trend=trend, maxiter=config.maxiter
    )
    return list(table["spec"].iloc[:config.n_search_candidates]), table


def run(config: ForecastConfig) -> Report:
    """
    Load -> build series -> log -> identify -> fit candidates -> compare -> forecast
    """
    if config.data_path is None:
        raise ValueError("No input file configured")

    records = load_records(
        config.data_path,
        date_column=config.date_column,
        price_column=config.price_column,
        sep=config.sep,
        date_format=config.date_format
    )
    start = config.start if config.start is not None else records["date"].min()
    end = config.end if config.end is not None else records["date"].max()
    name = pathlib.Path(config.data_path).stem

    ts = build_series(records, start=start, end=end, freq=config.freq, name=name)
    if config.analysis_start is not None:
        ts = truncate(ts, config.analysis_start)
    logger.info("Built %s series of %d observations [%s, %s]", name, ts.shape[0], ts.index[0], ts.index[-1])

    log = log_transform(ts)

    ident = identification_series(log, config.differencing, config.seasonal_differencing, config.seasonal_period)
    n = ident.values.shape[0]
    max_lag = config.max_lag if config.max_lag is not None else min(3 * config.seasonal_period, n // 2 - 1)
    acf_lags = diag.significant_lags(diag.autocorrelation(ident, max_lag), n)
    pacf_lags = diag.significant_lags(diag.partial_autocorrelation(ident, max_lag), n)
    ident_test = diag.white_noise_test(ident)
    logger.info("Significant ACF lags %s, PACF lags %s on %s", acf_lags, pacf_lags, ident.describe())

    candidates = config.candidate_specs()
    search_table = None
    if len(candidates) == 0:
        candidates, search_table = search_candidates(log, config)

    comparison = ev.compare_models(
        log,
        candidates,
        horizon=config.eval_horizon,
        start_fraction=config.start_fraction,
        power=config.dm_power,
        significance=config.significance,
        maxiter=config.maxiter,
        n_jobs=config.n_jobs
    )

    model = comparison.selected_model
    residual_test = diag.residuals_white_noise_test(model)
    if not residual_test.is_white_noise():
        logger.warning("Residuals of %s are not white noise (Ljung-Box p-value=%.4f)", model.spec.label, residual_test.p_value)

    fc = mod.forecast(model, horizon=config.forecast_horizon, alpha=config.alpha)

    report = Report(
        series_name=name,
        history=ts,
        identification=ident.describe(),
        acf_lags=acf_lags,
        pacf_lags=pacf_lags,
        identification_test=ident_test,
        candidates=candidates,
        information_criteria=comparison.information_criteria,
        error_summary=comparison.error_summary,
        diebold_mariano=comparison.diebold_mariano,
        compared=comparison.compared,
        selected=comparison.selected,
        reason=comparison.reason,
        model=model,
        residual_test=residual_test,
        forecast=fc,
        search_table=search_table,
        rolling_errors=comparison.errors[comparison.selected.label]
    )

    if config.output_dir is not None:
        save_report(report, config.output_dir, figures=config.figures)

    return report

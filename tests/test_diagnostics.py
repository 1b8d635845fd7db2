import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

import price_forecast.diagnostics as diag
from price_forecast.data import difference, log_transform
from price_forecast.evaluation import rolling_origin_errors
from price_forecast.models import ModelSpec, fit


def test_autocorrelation_lag_one_is_pearson(monthly_prices):
    """Lag-1 autocorrelation equals the Pearson correlation of S[:-1] and S[1:]"""
    acf = diag.autocorrelation(monthly_prices, max_lag=12)

    expected = np.corrcoef(monthly_prices.values[:-1], monthly_prices.values[1:])[0, 1]
    assert acf.shape == (12,)
    assert acf[0] == pytest.approx(expected)


def test_autocorrelation_accepts_transformed_series(monthly_prices):
    log_diffed = difference(log_transform(monthly_prices), lag=1)

    acf = diag.autocorrelation(log_diffed, max_lag=5)

    assert acf[2] == pytest.approx(log_diffed.values.autocorr(lag=3))


def test_autocorrelation_invalid_lag(monthly_prices):
    with pytest.raises(ValueError):
        diag.autocorrelation(monthly_prices, max_lag=0)
    with pytest.raises(ValueError):
        diag.autocorrelation(monthly_prices, max_lag=monthly_prices.shape[0])


def test_partial_autocorrelation_of_ar1(ar1_series):
    """An AR(1) process has a single significant partial autocorrelation, at lag 1"""
    pacf = diag.partial_autocorrelation(ar1_series, max_lag=10)

    assert pacf.shape == (10,)
    assert pacf[0] == pytest.approx(0.6, abs=0.15)
    assert 1 in diag.significant_lags(pacf, n=ar1_series.shape[0])


def test_partial_autocorrelation_invalid_lag(ar1_series):
    with pytest.raises(ValueError):
        diag.partial_autocorrelation(ar1_series, max_lag=ar1_series.shape[0] // 2)


def test_significance_band():
    assert diag.significance_band(100) == pytest.approx(0.196, abs=1e-3)
    assert diag.significance_band(400) == pytest.approx(0.098, abs=1e-3)


def test_significant_lags():
    values = np.array([0.5, 0.1, -0.3, 0.05])

    assert diag.significant_lags(values, n=100) == [1, 3]


def test_white_noise_test_on_iid_noise():
    rng = np.random.default_rng(42)
    noise = pd.Series(rng.normal(0, 1, 200))

    res = diag.white_noise_test(noise)

    assert res.lags == 10
    assert res.p_value > 0.05
    assert res.is_white_noise()


def test_white_noise_test_rejects_ar1(ar1_series):
    res = diag.white_noise_test(ar1_series, lags=12)

    assert res.p_value <= 0.05
    assert not res.is_white_noise()


def test_white_noise_test_model_df():
    rng = np.random.default_rng(0)
    noise = pd.Series(rng.normal(0, 1, 100))

    res = diag.white_noise_test(noise, lags=12, model_df=3)
    assert res.model_df == 3

    with pytest.raises(ValueError):
        diag.white_noise_test(noise, lags=3, model_df=3)


def test_get_forecast_error_df():
    test = pd.Series([1.0, 2.0, 4.0])
    forecast = pd.Series([1.0, 3.0, 2.0])

    df = diag.get_forecast_error_df(test, forecast)

    assert df.loc[0, "MAE"] == pytest.approx(1.0)
    assert df.loc[0, "RMSE"] == pytest.approx(np.sqrt(5 / 3))
    assert df.loc[0, "MAPE"] == pytest.approx((0 + 0.5 + 0.5) / 3)


def test_get_stationarity_df(ar1_series):
    df = diag.get_stationarity_df(ar1_series)

    assert df["test"].tolist() == ["adfuller", "kpss"]
    # Stationary AR(1): ADF rejects the unit root
    assert df.loc[0, "p-value"] < 0.05


def test_plot_rolling_origin_predictions(monthly_prices):
    log = log_transform(monthly_prices)
    spec = ModelSpec(order=(0, 1, 1))
    fitted = fit(log, spec)
    errors = rolling_origin_errors(log, spec, horizon=2, start=80)
    errors.iloc[0] = np.nan

    fig = diag.plot_rolling_origin_predictions(fitted, errors)

    ax = fig.axes[0]
    train, actual, forecast = (line.get_ydata() for line in ax.get_lines()[:3])
    kept = errors.dropna()
    assert len(train) == monthly_prices.index.get_loc(kept.index[0])
    np.testing.assert_allclose(actual, monthly_prices.loc[kept.index].values)
    np.testing.assert_allclose(forecast, monthly_prices.loc[kept.index].values * np.exp(-kept.values))
    plt.close(fig)

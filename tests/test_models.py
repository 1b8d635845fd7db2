import numpy as np
import pandas as pd
import pytest
from statsmodels.tsa.arima_process import arma_generate_sample

import price_forecast.diagnostics as diag
import price_forecast.models as mod
from price_forecast.data import log_transform
from price_forecast.errors import InvalidSpecError, NonConvergenceError


@pytest.fixture
def sarma_series():
    """Length-180 monthly series from a SARMA(1,0,1)(0,0,3)[12] with known coefficients"""
    rng = np.random.default_rng(12345)
    seasonal_ma = np.zeros(37)
    seasonal_ma[[0, 12, 24, 36]] = [1.0, 0.5, 0.3, 0.2]
    ma = np.convolve([1.0, 0.4], seasonal_ma)
    ar = [1.0, -0.5]

    y = arma_generate_sample(ar, ma, nsample=180, scale=1.0, distrvs=rng.standard_normal, burnin=300)
    return pd.Series(y, index=pd.period_range(start="2005-01", periods=180, freq="M"))


def test_model_spec_label_and_roundtrip():
    spec = mod.ModelSpec(order=(1, 0, 1), seasonal_order=(0, 0, 3), period=12)

    assert spec.label == "SARIMA(1,0,1)(0,0,3)[12]"
    assert mod.ModelSpec(order=(2, 1, 0)).label == "ARIMA(2,1,0)"
    assert mod.ModelSpec.from_dict(spec.to_dict()) == spec
    assert mod.ModelSpec.from_dict({"order": [1, 0, 1], "seasonal_order": [0, 0, 3], "period": 12}) == spec


@pytest.mark.parametrize("kwargs", [
    {"order": (-1, 0, 0)},
    {"order": (1, 0, 0), "seasonal_order": (0, 0, -1), "period": 12},
    {"order": (1, 0, 0), "seasonal_order": (1, 0, 0), "period": 0},
    {"order": (1, 0)},
    {"order": (1, 0, 0), "trend": "quadratic"},
])
def test_model_spec_validation(kwargs):
    with pytest.raises(InvalidSpecError):
        mod.ModelSpec(**kwargs)


def test_model_spec_from_dict_unknown_key():
    with pytest.raises(InvalidSpecError):
        mod.ModelSpec.from_dict({"order": [1, 0, 0], "seasonal": [0, 0, 1]})


def test_fit_rejects_too_short_series(ar1_series):
    spec = mod.ModelSpec(order=(1, 0, 0), seasonal_order=(0, 0, 3), period=12)

    with pytest.raises(InvalidSpecError):
        mod.fit(ar1_series[:spec.min_observations], spec)


def test_fit_ar1_recovers_coefficient(ar1_series):
    fitted = mod.fit(ar1_series, mod.ModelSpec(order=(1, 0, 0)))

    assert fitted.params["ar.L1"] == pytest.approx(0.6, abs=0.1)
    assert fitted.n_params == 2
    assert fitted.n_arma_terms == 1
    assert fitted.aic < fitted.bic

    coefs = fitted.coefficients()
    assert list(coefs.columns) == ["coef", "std_err", "significant"]
    assert bool(coefs.loc["ar.L1", "significant"])


def test_fit_reports_non_convergence(ar1_series):
    with pytest.raises(NonConvergenceError):
        mod.fit(ar1_series, mod.ModelSpec(order=(2, 0, 2)), maxiter=1)


def test_fit_retries_when_lbfgs_stops_early(ar1_series, monkeypatch):
    """A L-BFGS run flagged as not converged is polished with Nelder-Mead instead of discarded"""
    real_fit = mod.SARIMAX.fit
    methods = []

    def lbfgs_stops_early(self, *args, **kwargs):
        method = kwargs.get("method", "lbfgs")
        methods.append(method)
        res = real_fit(self, *args, **kwargs)
        if method == "lbfgs":
            res.mle_retvals["converged"] = False
            res.mle_retvals["warnflag"] = 2
        return res

    monkeypatch.setattr(mod.SARIMAX, "fit", lbfgs_stops_early)

    fitted = mod.fit(ar1_series, mod.ModelSpec(order=(1, 0, 0)))

    assert methods == ["lbfgs", "nm"]
    assert fitted.results.mle_retvals["converged"]
    assert fitted.params["ar.L1"] == pytest.approx(0.6, abs=0.1)


def test_fit_sarma_recovers_generating_coefficients(sarma_series):
    spec = mod.ModelSpec(order=(1, 0, 1), seasonal_order=(0, 0, 3), period=12)

    fitted = mod.fit(sarma_series, spec, maxiter=500)

    expected = {"ar.L1": 0.5, "ma.L1": 0.4, "ma.S.L12": 0.5, "ma.S.L24": 0.3, "ma.S.L36": 0.2}
    for name, value in expected.items():
        assert fitted.params[name] == pytest.approx(value, abs=0.25), name

    lb = diag.residuals_white_noise_test(fitted)
    assert lb.model_df == 5
    assert lb.p_value > 0.05


def test_forecast_bounds_and_index(ar1_series):
    fitted = mod.fit(ar1_series, mod.ModelSpec(order=(1, 0, 0)))

    fc = mod.forecast(fitted, horizon=4, alpha=0.05)

    assert fc.horizon == 4
    assert fc.point.shape[0] == 4
    assert fc.point.index[0] == ar1_series.index[-1] + 1
    assert (fc.lower <= fc.point).all()
    assert (fc.point <= fc.upper).all()
    # Untransformed series: point forecast is the model mean
    pd.testing.assert_series_equal(fc.point, fc.mean)
    np.testing.assert_allclose((fc.upper - fc.lower).values, 2 * 1.959964 * fc.se.values, rtol=1e-5)


def test_forecast_on_log_scale_is_exponentiated(monthly_prices):
    log = log_transform(monthly_prices)
    fitted = mod.fit(log, mod.ModelSpec(order=(0, 1, 1)))

    fc = mod.forecast(fitted, horizon=3)

    np.testing.assert_allclose(fc.point.values, np.exp(fc.mean.values))
    assert (fc.lower > 0).all()
    assert (fc.lower <= fc.point).all() and (fc.point <= fc.upper).all()
    # Wider intervals with a higher confidence level
    fc99 = mod.forecast(fitted, horizon=3, alpha=0.01)
    assert (fc99.upper >= fc.upper).all()
    assert fc.to_frame().columns.tolist() == ["point", "lower", "upper"]


def test_forecast_invalid_horizon(ar1_series):
    fitted = mod.fit(ar1_series, mod.ModelSpec(order=(1, 0, 0)))

    with pytest.raises(InvalidSpecError):
        mod.forecast(fitted, horizon=0)


def test_grid_search_ranks_by_aic(ar1_series):
    best, table = mod.grid_search(ar1_series, p_range=range(0, 3), q_range=range(0, 2))

    assert table.shape[0] == 6
    assert table["aic"].is_monotonic_increasing
    assert best == table.loc[0, "spec"]
    assert best.order[0] >= 1


def test_grid_search_skips_failed_candidates(ar1_series, monkeypatch):
    real_fit = mod.fit

    def arma11_fails(series, spec, maxiter=200):
        if spec.order == (1, 0, 1):
            raise NonConvergenceError("simulated")
        return real_fit(series, spec, maxiter=maxiter)

    monkeypatch.setattr(mod, "fit", arma11_fails)

    best, table = mod.grid_search(ar1_series, p_range=range(0, 2), q_range=range(0, 2))

    assert table.shape[0] == 3
    assert "ARIMA(1,0,1)" not in table["model"].tolist()
    assert best == table.loc[0, "spec"]


def test_grid_search_nothing_fitted(ar1_series, monkeypatch):
    def always_fails(series, spec, maxiter=200):
        raise NonConvergenceError("simulated")

    monkeypatch.setattr(mod, "fit", always_fails)

    with pytest.raises(NonConvergenceError):
        mod.grid_search(ar1_series, p_range=range(0, 2), q_range=range(0, 2))


def test_auto_order_returns_spec(ar1_series):
    spec = mod.auto_order(ar1_series, max_p=2, max_q=2)

    assert isinstance(spec, mod.ModelSpec)
    assert not spec.is_seasonal
    assert spec.order[1] == 0

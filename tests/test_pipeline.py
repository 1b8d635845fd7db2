import dataclasses
import json

import pytest

from price_forecast.cli import main
from price_forecast.config import ForecastConfig, load_config
from price_forecast.errors import InsufficientDataError
from price_forecast.models import ModelSpec
from price_forecast.pipeline import run
from price_forecast.report import render_text

CANDIDATES = [
    {"order": [1, 1, 0]},
    {"order": [0, 1, 1]},
]


@pytest.fixture
def config(price_csv):
    return ForecastConfig(
        data_path=str(price_csv),
        start="2010-01",
        end="2017-12",
        seasonal_differencing=0,
        candidates=CANDIDATES,
        max_lag=12,
    )


def test_run_end_to_end(config, monthly_prices):
    report = run(config)

    assert report.history.shape[0] == 96
    assert report.identification == "log -> diff(1)"
    assert {c.label for c in report.candidates} == {"ARIMA(1,1,0)", "ARIMA(0,1,1)"}
    assert report.selected in report.candidates
    assert report.information_criteria.shape[0] == 2
    origins = report.error_summary["n_errors"] + report.error_summary["n_missing"]
    assert origins.tolist() == [96 - 4 - 67 + 1] * 2
    assert (report.error_summary["n_errors"] >= 2).all()
    assert report.diebold_mariano is not None

    table = report.forecast_table()
    assert table.index.tolist() == ["2018-01", "2018-02", "2018-03"]
    assert (table["lower"] <= table["point"]).all()
    assert (table["point"] <= table["upper"]).all()
    # Forecasts in price units, close to the last observed price
    assert table["point"].iloc[0] == pytest.approx(monthly_prices.iloc[-1], rel=0.2)

    text = render_text(report)
    assert report.selected.label in text
    assert "Diebold-Mariano" in text


def test_run_with_analysis_start(config):
    config.analysis_start = "2012-01"

    report = run(config)

    assert str(report.history.index[0]) == "2012-01"
    assert report.history.shape[0] == 72


def test_run_window_not_covered(config):
    config.end = "2019-12"

    with pytest.raises(InsufficientDataError):
        run(config)


def test_run_grid_search_candidates(config):
    config.candidates = []
    config.max_p, config.max_q, config.max_P, config.max_Q = 1, 1, 0, 0

    report = run(config)

    assert len(report.candidates) == 2
    assert report.search_table is not None
    assert report.search_table.shape[0] == 4
    assert report.candidates[0] == report.search_table.loc[0, "spec"]


def test_run_writes_report(config, tmp_path):
    out = tmp_path / "out"
    config.output_dir = str(out)
    config.figures = True

    report = run(config)

    payload = json.loads((out / "report.json").read_text())
    assert payload["selected"]["label"] == report.selected.label
    assert len(payload["forecast"]["values"]) == 3
    assert payload["series"]["n_observations"] == 96
    assert (out / "report.txt").read_text().startswith("Series:")
    assert (out / "forecast.png").exists()
    assert (out / "residuals.png").exists()
    assert (out / "rolling_origin.png").exists()


def test_config_from_dict_rejects_unknown_keys():
    with pytest.raises(ValueError, match="horizon"):
        ForecastConfig.from_dict({"horizon": 3})


def test_config_validation():
    with pytest.raises(ValueError):
        ForecastConfig(order_search="exhaustive")
    with pytest.raises(ValueError):
        ForecastConfig(start_fraction=1.5)


@pytest.mark.parametrize("freq, period", [("M", 12), ("Q", 4)])
def test_config_seasonal_period_follows_frequency(freq, period):
    assert ForecastConfig(freq=freq).seasonal_period == period
    # Explicit value wins
    assert ForecastConfig(freq=freq, seasonal_period=6).seasonal_period == 6


def test_config_rejects_unknown_frequency():
    with pytest.raises(ValueError, match="freq"):
        ForecastConfig(freq="W")


def test_run_quarterly_uses_annual_season(config):
    quarterly = dataclasses.replace(
        config, freq="Q", start="2010Q1", end="2017Q4", seasonal_period=None,
        seasonal_differencing=1, candidates=[{"order": [0, 1, 1]}], max_lag=4
    )

    report = run(quarterly)

    assert report.history.shape[0] == 32
    assert report.identification == "log -> diff(1) -> diff(4)"


def test_load_config_with_overrides(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "data_path": "prices.csv",
        "start": "2005-01",
        "candidates": [{"order": [1, 0, 1], "seasonal_order": [0, 0, 3], "period": 12}],
    }))

    config = load_config(path, start="2006-01", alpha=None)

    assert config.start == "2006-01"
    assert config.alpha == 0.05
    assert config.candidate_specs() == [ModelSpec(order=(1, 0, 1), seasonal_order=(0, 0, 3), period=12)]


def test_cli(price_csv, capsys):
    code = main([
        str(price_csv), "--start", "2010-01", "--end", "2017-12",
        "--model", '{"order": [1, 1, 0]}', "--model", '{"order": [0, 1, 1]}',
    ])

    assert code == 0
    assert "Selected model" in capsys.readouterr().out


def test_cli_reports_data_errors(price_csv):
    code = main([str(price_csv), "--price-column", "Adj Close"])

    assert code == 1

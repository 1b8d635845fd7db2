import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest


def make_monthly_prices(n_months: int = 96, start: str = "2010-01", seed: int = 42) -> pd.Series:
    """Geometric random walk with a mild annual cycle, always positive"""
    rng = np.random.default_rng(seed)
    index = pd.period_range(start=start, periods=n_months, freq="M")
    season = 0.02 * np.sin(2 * np.pi * np.arange(n_months) / 12)
    log_price = np.log(100) + np.cumsum(rng.normal(0.005, 0.04, n_months)) + season
    return pd.Series(np.exp(log_price), index=index, name="price")


def make_ar1(n: int = 300, phi: float = 0.6, seed: int = 42) -> pd.Series:
    rng = np.random.default_rng(seed)
    eps = rng.normal(0, 1, n + 100)
    x = np.zeros(n + 100)
    for t in range(1, n + 100):
        x[t] = phi * x[t - 1] + eps[t]
    return pd.Series(x[100:], index=pd.period_range(start="1990-01", periods=n, freq="M"))


def write_price_csv(path, prices: pd.Series, newest_first: bool = True, date_column: str = "Date", price_column: str = "Close"):
    df = pd.DataFrame({
        date_column: prices.index.to_timestamp().strftime("%Y-%m-%d"),
        "Open": prices.values * 0.99,
        price_column: prices.values,
    })
    if newest_first:
        df = df.iloc[::-1]
    df.to_csv(path, index=False)
    return path


@pytest.fixture
def monthly_prices():
    return make_monthly_prices()


@pytest.fixture
def ar1_series():
    return make_ar1()


@pytest.fixture
def price_csv(tmp_path, monthly_prices):
    return write_price_csv(tmp_path / "stock.csv", monthly_prices)

import dataclasses
import logging
import pathlib
import typing

import numpy as np
import pandas as pd
import statsmodels.tsa.stattools as tsa

import price_forecast.visualization as vis
from price_forecast.errors import DataFormatError, DomainError, InsufficientDataError

logger = logging.getLogger(__name__)

DATA_DIR = pathlib.Path(__file__).parent.resolve() / ".." / "data"

OBSERVATIONS_PER_YEAR = {"M": 12, "Q": 4}


def load_records(
        path: str | pathlib.Path,
        date_column: str = "Date",
        price_column: str = "Close",
        sep: str = ",",
        date_format: str = "%Y-%m-%d"
) -> pd.DataFrame:
    """
    Read the raw price records from a delimited file.

    :param path: csv (or otherwise delimited) file
    :param date_column: name of the column holding the observation dates
    :param price_column: name of the reference price column, e.g. "Close" or "Adj Close"
    :param date_format: strptime format of the dates
    :return: dataframe with columns `date` (datetime64) and `price` (float), in file order
    """
    try:
        raw = pd.read_csv(path, sep=sep)
    except pd.errors.EmptyDataError as exc:
        raise DataFormatError(f"{path} is empty") from exc

    missing = [col for col in (date_column, price_column) if col not in raw.columns]
    if len(missing) > 0:
        raise DataFormatError(f"{path} is missing required column(s) {missing}, found {list(raw.columns)}")
    if raw.shape[0] == 0:
        raise DataFormatError(f"{path} has no rows")

    try:
        dates = pd.to_datetime(raw[date_column], format=date_format)
    except (ValueError, TypeError) as exc:
        raise DataFormatError(f"Could not parse dates in column '{date_column}' with format '{date_format}': {exc}") from exc

    try:
        prices = pd.to_numeric(raw[price_column]).astype(float)
    except (ValueError, TypeError) as exc:
        raise DataFormatError(f"Non-numeric value in price column '{price_column}': {exc}") from exc

    if dates.isna().any() or prices.isna().any():
        raise DataFormatError(f"{path} has empty date or price cells")

    records = pd.DataFrame({"date": dates.to_numpy(), "price": prices.to_numpy()})
    logger.info("Loaded %d records from %s (%s to %s)", records.shape[0], path, records["date"].min().date(), records["date"].max().date())
    return records


def build_series(
        records: pd.DataFrame,
        start: str | pd.Period,
        end: str | pd.Period,
        freq: str = "M",
        name: str = "price"
) -> pd.Series:
    """
    Build a fixed-frequency series with exactly one observation per period in [start, end].

    Records are sorted chronologically first, because price exports are often newest-first.
    When a period holds more than one record, the first one is kept (same as resampling with `.first()`).

    :param records: output of `load_records`
    :param start: first period of the window, inclusive
    :param end: last period of the window, inclusive
    :param freq: "M" for monthly or "Q" for quarterly
    :return: series indexed by a PeriodIndex of frequency `freq`
    """
    if freq not in OBSERVATIONS_PER_YEAR:
        raise ValueError(f"Unsupported frequency '{freq}', expected one of {list(OBSERVATIONS_PER_YEAR)}")

    start, end = pd.Period(start, freq=freq), pd.Period(end, freq=freq)
    if start > end:
        raise ValueError(f"Window start {start} is after window end {end}")

    ordered = records.sort_values("date", kind="stable")
    ts = pd.Series(ordered["price"].to_numpy(), index=ordered["date"].dt.to_period(freq), name=name)
    ts = ts.groupby(level=0).first()

    first, last = ts.index.min(), ts.index.max()
    if start < first or end > last:
        raise InsufficientDataError(f"Requested window [{start}, {end}] is not covered by the data [{first}, {last}]")

    window = pd.period_range(start=start, end=end, freq=freq)
    missing = window.difference(ts.index)
    if len(missing) > 0:
        raise InsufficientDataError(f"No observation for period(s) {[str(p) for p in missing]}")

    ts = ts.reindex(window)
    ts.name = name
    return ts


def truncate(ts: pd.Series, start: str | pd.Period) -> pd.Series:
    """
    Restrict an already built series to a later start period
    """
    start = pd.Period(start, freq=ts.index.freq)
    if start < ts.index[0] or start > ts.index[-1]:
        raise InsufficientDataError(f"Start {start} is outside the series range [{ts.index[0]}, {ts.index[-1]}]")
    return ts.loc[start:].copy()


class TransformStep(typing.NamedTuple):
    name: str
    lag: int | None = None


@dataclasses.dataclass(frozen=True, eq=False)
class TransformedSeries:
    values: pd.Series
    steps: typing.Tuple[TransformStep, ...] = ()
    parent: pd.Series | None = None
    """The untransformed series the steps were applied to"""

    @property
    def is_log(self) -> bool:
        return any(step.name == "log" for step in self.steps)

    def describe(self) -> str:
        if len(self.steps) == 0:
            return "original"
        return " -> ".join(step.name if step.lag is None else f"{step.name}({step.lag})" for step in self.steps)

    def inverse(self, values: pd.Series | np.ndarray) -> pd.Series | np.ndarray:
        """
        Map values from the transformed scale back to the original one.
        Only log chains can be inverted pointwise; differencing is left to the model.
        """
        out = values
        for step in reversed(self.steps):
            if step.name == "log":
                out = np.exp(out)
            else:
                raise ValueError(
                    f"Cannot invert '{self.describe()}' pointwise: "
                    f"fit the model on the undifferenced series and let it integrate instead"
                )
        return out

    def __len__(self):
        return self.values.shape[0]


def as_transformed(ts: pd.Series | TransformedSeries) -> TransformedSeries:
    if isinstance(ts, TransformedSeries):
        return ts
    return TransformedSeries(values=ts, steps=(), parent=ts)


def log_transform(ts: pd.Series | TransformedSeries) -> TransformedSeries:
    source = as_transformed(ts)
    if (source.values <= 0).any():
        bad = source.values[source.values <= 0]
        raise DomainError(f"Log transform needs strictly positive values, got {bad.shape[0]} non-positive (first at {bad.index[0]})")

    return TransformedSeries(
        values=np.log(source.values),
        steps=source.steps + (TransformStep("log"),),
        parent=source.parent
    )


def difference(ts: pd.Series | TransformedSeries, lag: int = 1) -> TransformedSeries:
    """
    out[i] = in[i + lag] - in[i], indexed at the later period. Output is `lag` samples shorter.
    """
    source = as_transformed(ts)
    if not (1 <= lag < source.values.shape[0]):
        raise ValueError(f"Differencing lag must be in [1, {source.values.shape[0]}), got {lag}")

    return TransformedSeries(
        values=source.values.diff(periods=lag).iloc[lag:],
        steps=source.steps + (TransformStep("diff", lag),),
        parent=source.parent
    )


class PriceSeries:
    def __init__(self, original: pd.Series, name: str = "price", expected_seasonality: int = 12, differencing_periods: int = 1):
        """
        Holds the views of one price series that are looked at during identification

        :param original: output of `build_series`
        :param expected_seasonality: seasonal period, in number of observations
        :param differencing_periods: lag of the plain differencing
        """
        self.name = name
        self.expected_seasonality = expected_seasonality
        self.differencing_periods = differencing_periods

        self.original: pd.Series = original
        self.log: TransformedSeries = log_transform(original)
        self.diffed: TransformedSeries = difference(original, lag=differencing_periods)
        self.log_diffed: TransformedSeries = difference(self.log, lag=differencing_periods)
        self.log_seasonal_diffed: TransformedSeries = difference(self.log_diffed, lag=expected_seasonality)

    @classmethod
    def from_file(cls, path: str | pathlib.Path, start: str, end: str, freq: str = "M", **load_kwargs) -> "PriceSeries":
        records = load_records(path, **load_kwargs)
        return cls(
            build_series(records, start=start, end=end, freq=freq),
            name=pathlib.Path(path).stem,
            expected_seasonality=OBSERVATIONS_PER_YEAR[freq]
        )

    def plot_visualizations(
            self,
            original: bool = False,
            diffed: bool = False,
            log: bool = False,
            log_diffed: bool = False,
            log_seasonal_diffed: bool = False
    ):
        if original:
            self._plot_ts_visualizations(self.original, ts_name="Original")
        if diffed:
            self._plot_ts_visualizations(self.diffed.values, ts_name=f"{self.differencing_periods}-Differenced")
        if log:
            self._plot_ts_visualizations(self.log.values, ts_name="Log")
        if log_diffed:
            self._plot_ts_visualizations(self.log_diffed.values, ts_name=f"Log {self.differencing_periods}-Differenced")
        if log_seasonal_diffed:
            self._plot_ts_visualizations(
                self.log_seasonal_diffed.values,
                ts_name=f"Log {self.differencing_periods},{self.expected_seasonality}-Differenced"
            )

    def _plot_ts_visualizations(self, ts: pd.Series, ts_name: str):
        vis.ts_eda(ts=ts, ts_name=f"{self.name} - {ts_name}", expected_seasonality=self.expected_seasonality)

    def stationarity_tests(self) -> pd.DataFrame:
        views = {
            "original": self.original,
            "diffed": self.diffed.values,
            "log": self.log.values,
            "log_diffed": self.log_diffed.values,
            "log_seasonal_diffed": self.log_seasonal_diffed.values,
        }
        # first two elements of adfuller and kpss are statistic, p-value
        rows = [[name, "adfuller", *(tsa.adfuller(ts)[:2])] for name, ts in views.items()]
        rows += [[name, "kpss", *(tsa.kpss(ts)[:2])] for name, ts in views.items()]
        return pd.DataFrame(rows, columns=["ts", "test", "statistic", "p-value"])

import dataclasses
import json
import pathlib
import typing

from price_forecast.data import OBSERVATIONS_PER_YEAR
from price_forecast.models import ModelSpec

ORDER_SEARCH_METHODS = ("grid", "auto_arima")


@dataclasses.dataclass
class ForecastConfig:
    """Configuration of one forecasting run.

    - data_path / date_column / price_column / sep / date_format: input file layout;
    - start, end: inclusive date window of the series (e.g. "2005-01", "2019-12");
    - analysis_start: optional later start, the built series is truncated to it;
    - freq: "M" or "Q"; seasonal_period: seasonal period in observations, one year (12 or 4) if not set;
    - candidates: model specs to compare, as dicts accepted by `ModelSpec.from_dict`.
      If empty, `order_search` ("grid" or "auto_arima") picks candidates automatically;
    - eval_horizon / start_fraction: rolling-origin evaluation settings;
    - forecast_horizon / alpha: final forecast settings (3 months = next quarter);
    - dm_power / significance: Diebold-Mariano loss power and significance level.
    """
    data_path: str | None = None
    date_column: str = "Date"
    price_column: str = "Close"
    sep: str = ","
    date_format: str = "%Y-%m-%d"
    start: str | None = None
    end: str | None = None
    analysis_start: str | None = None
    freq: str = "M"
    seasonal_period: int | None = None
    differencing: int = 1
    seasonal_differencing: int = 1
    candidates: typing.List[typing.Dict[str, typing.Any]] = dataclasses.field(default_factory=list)
    order_search: str = "grid"
    max_p: int = 2
    max_q: int = 2
    max_P: int = 1
    max_Q: int = 1
    n_search_candidates: int = 2
    eval_horizon: int = 4
    start_fraction: float = 0.70
    forecast_horizon: int = 3
    alpha: float = 0.05
    dm_power: float = 1
    significance: float = 0.05
    max_lag: int | None = None
    maxiter: int = 200
    n_jobs: int = 1
    output_dir: str | None = None
    figures: bool = False

    def __post_init__(self):
        if self.freq not in OBSERVATIONS_PER_YEAR:
            raise ValueError(f"freq must be one of {list(OBSERVATIONS_PER_YEAR)}, got '{self.freq}'")
        if self.seasonal_period is None:
            self.seasonal_period = OBSERVATIONS_PER_YEAR[self.freq]
        if self.order_search not in ORDER_SEARCH_METHODS:
            raise ValueError(f"order_search must be one of {ORDER_SEARCH_METHODS}, got '{self.order_search}'")
        if not (0 < self.start_fraction < 1):
            raise ValueError(f"start_fraction must be in (0, 1), got {self.start_fraction}")
        if not (0 < self.alpha < 1):
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if self.eval_horizon < 1 or self.forecast_horizon < 1:
            raise ValueError("Horizons must be >= 1")

    def candidate_specs(self) -> typing.List[ModelSpec]:
        return [ModelSpec.from_dict(c) for c in self.candidates]

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, payload: typing.Dict[str, typing.Any]) -> "ForecastConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(payload) - known
        if len(unknown) > 0:
            raise ValueError(f"Unknown configuration key(s) {sorted(unknown)}")
        return cls(**payload)


def load_config(path: str | pathlib.Path, **overrides) -> ForecastConfig:
    """
    Read a json configuration file. Overrides whose value is None are ignored.
    """
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise ValueError(f"{path} must hold a json object")

    payload.update({k: v for k, v in overrides.items() if v is not None})
    return ForecastConfig.from_dict(payload)

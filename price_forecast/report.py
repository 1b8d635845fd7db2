import dataclasses
import json
import logging
import pathlib
import typing

import matplotlib
import matplotlib.pyplot as plt
import pandas as pd

import price_forecast.diagnostics as diag
import price_forecast.visualization as vis
from price_forecast.diagnostics import LjungBoxResult
from price_forecast.evaluation import DieboldMarianoResult
from price_forecast.models import FittedModel, ForecastResult, ModelSpec

logger = logging.getLogger(__name__)


def _json_default(o):
    # numpy scalars
    if hasattr(o, "item"):
        return o.item()
    return str(o)


@dataclasses.dataclass(frozen=True, eq=False)
class Report:
    series_name: str
    history: pd.Series
    """Observed series on the original price scale"""
    identification: str
    """Transform chain of the series the (P)ACF was inspected on"""
    acf_lags: typing.List[int]
    pacf_lags: typing.List[int]
    identification_test: LjungBoxResult
    candidates: typing.List[ModelSpec]
    information_criteria: pd.DataFrame
    error_summary: pd.DataFrame
    diebold_mariano: DieboldMarianoResult | None
    compared: typing.Tuple[str, ...]
    selected: ModelSpec
    reason: str
    model: FittedModel
    residual_test: LjungBoxResult
    forecast: ForecastResult
    search_table: pd.DataFrame | None = None
    rolling_errors: pd.Series | None = None
    """Rolling-origin errors of the selected model"""

    def forecast_table(self) -> pd.DataFrame:
        table = self.forecast.to_frame()
        table.index = table.index.astype(str)
        table.index.name = "period"
        return table

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {
            "series": {
                "name": self.series_name,
                "start": str(self.history.index[0]),
                "end": str(self.history.index[-1]),
                "n_observations": int(self.history.shape[0]),
            },
            "identification": {
                "series": self.identification,
                "acf_significant_lags": self.acf_lags,
                "pacf_significant_lags": self.pacf_lags,
                "ljung_box": dataclasses.asdict(self.identification_test),
            },
            "candidates": [spec.to_dict() | {"label": spec.label} for spec in self.candidates],
            "information_criteria": self.information_criteria.to_dict(orient="records"),
            "out_of_sample": {
                "summary": self.error_summary.to_dict(orient="records"),
                "compared": list(self.compared),
                "diebold_mariano": None if self.diebold_mariano is None else dataclasses.asdict(self.diebold_mariano),
            },
            "selected": self.selected.to_dict() | {"label": self.selected.label, "reason": self.reason},
            "coefficients": self.model.coefficients().reset_index(names="parameter").to_dict(orient="records"),
            "residual_ljung_box": dataclasses.asdict(self.residual_test),
            "forecast": {
                "horizon": self.forecast.horizon,
                "alpha": self.forecast.alpha,
                "values": self.forecast_table().reset_index().to_dict(orient="records"),
            },
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=_json_default)


def render_text(report: Report) -> str:
    lines = [
        f"Series: {report.series_name} [{report.history.index[0]} - {report.history.index[-1]}], "
        f"{report.history.shape[0]} observations",
        "",
        f"Identification on {report.identification}",
        f"  significant ACF lags:  {report.acf_lags}",
        f"  significant PACF lags: {report.pacf_lags}",
        f"  Ljung-Box({report.identification_test.lags}): statistic={report.identification_test.statistic:.3f} "
        f"p-value={report.identification_test.p_value:.4f}",
        "",
        "In-sample comparison",
        report.information_criteria.to_string(index=False, float_format="%.3f"),
        "",
        "Out-of-sample comparison (absolute rolling-origin errors)",
        report.error_summary.to_string(index=False, float_format="%.5f"),
    ]
    if report.diebold_mariano is not None:
        dm = report.diebold_mariano
        lines.append(
            f"Diebold-Mariano {report.compared[0]} vs {report.compared[1]} (h={dm.horizon}, power={dm.power:g}): "
            f"statistic={dm.statistic:.4f} p-value={dm.p_value:.4f}"
        )

    resid = report.residual_test
    lines += [
        "",
        f"Selected model: {report.selected.label} ({report.reason})",
        report.model.coefficients().to_string(float_format="%.4f"),
        f"Residual Ljung-Box({resid.lags}, df={resid.lags - resid.model_df}): statistic={resid.statistic:.3f} "
        f"p-value={resid.p_value:.4f} -> {'white noise' if resid.is_white_noise() else 'NOT white noise'}",
        "",
        f"Forecast ({(1 - report.forecast.alpha) * 100:.0f}% confidence bounds)",
        report.forecast_table().to_string(float_format="%.4f"),
    ]
    return "\n".join(lines)


def save_figures(report: Report, output_dir: pathlib.Path) -> typing.List[pathlib.Path]:
    # Figures are written, never shown
    matplotlib.use("Agg")
    figures = {
        "forecast.png": vis.plot_forecast(report.history, report.forecast, title=f"{report.series_name} - {report.selected.label}"),
        "residuals.png": diag.fitted_model_diagnostics(report.model),
    }
    if report.rolling_errors is not None:
        figures["rolling_origin.png"] = diag.plot_rolling_origin_predictions(report.model, report.rolling_errors)

    paths = []
    for filename, fig in figures.items():
        path = output_dir / filename
        fig.savefig(path)
        plt.close(fig)
        paths.append(path)
    return paths


def save_report(report: Report, output_dir: str | pathlib.Path, figures: bool = False) -> typing.List[pathlib.Path]:
    output_dir = pathlib.Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = [output_dir / "report.json", output_dir / "report.txt"]
    paths[0].write_text(report.to_json(), encoding="utf-8")
    paths[1].write_text(render_text(report), encoding="utf-8")

    if figures:
        paths += save_figures(report, output_dir)

    logger.info("Wrote %s", ", ".join(str(p) for p in paths))
    return paths

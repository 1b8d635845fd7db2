import argparse
import json
import logging
import sys
import typing

from price_forecast.config import ForecastConfig, load_config
from price_forecast.errors import ForecastError
from price_forecast.pipeline import run
from price_forecast.report import render_text

logger = logging.getLogger(__name__)


def _parse_args(argv: typing.Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="price-forecast",
        description="Fit SARIMA candidates to a monthly price series and forecast the next quarter"
    )
    parser.add_argument("data_path", nargs="?", default=None, help="delimited file with a date and a price column")
    parser.add_argument("--config", type=str, default=None, help="json configuration file, flags override its values")
    parser.add_argument(
        "--model",
        action="append",
        default=None,
        help='candidate model as json, e.g. \'{"order": [1, 1, 1], "seasonal_order": [0, 1, 1], "period": 12}\'. Repeatable'
    )
    parser.add_argument("--date-column", type=str, default=None)
    parser.add_argument("--price-column", type=str, default=None)
    parser.add_argument("--start", type=str, default=None, help="first period of the window, e.g. 2005-01")
    parser.add_argument("--end", type=str, default=None, help="last period of the window, e.g. 2019-12")
    parser.add_argument("--analysis-start", type=str, default=None, help="truncate the series to start at this period")
    parser.add_argument("--order-search", choices=("grid", "auto_arima"), default=None)
    parser.add_argument("--horizon", dest="forecast_horizon", type=int, default=None, help="forecast horizon")
    parser.add_argument("--alpha", type=float, default=None, help="1 - confidence level of the forecast intervals")
    parser.add_argument("--n-jobs", type=int, default=None, help="parallel fits in the rolling-origin evaluation")
    parser.add_argument("--output-dir", type=str, default=None, help="write report.json, report.txt (and figures) here")
    parser.add_argument("--figures", action="store_true", default=None, help="also write figures to --output-dir")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ForecastConfig:
    overrides = {
        "data_path": args.data_path,
        "date_column": args.date_column,
        "price_column": args.price_column,
        "start": args.start,
        "end": args.end,
        "analysis_start": args.analysis_start,
        "order_search": args.order_search,
        "forecast_horizon": args.forecast_horizon,
        "alpha": args.alpha,
        "n_jobs": args.n_jobs,
        "output_dir": args.output_dir,
        "figures": args.figures,
    }
    if args.model is not None:
        try:
            overrides["candidates"] = [json.loads(m) for m in args.model]
        except json.JSONDecodeError as exc:
            raise SystemExit(f"invalid --model payload: {exc}") from exc

    if args.config is not None:
        return load_config(args.config, **overrides)
    return ForecastConfig.from_dict({k: v for k, v in overrides.items() if v is not None})


def main(argv: typing.Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = build_config(args)
        report = run(config)
    except (ForecastError, ValueError, OSError) as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1

    print(render_text(report))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry only
    sys.exit(main())

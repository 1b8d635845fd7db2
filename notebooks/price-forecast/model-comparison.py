# ---
# jupyter:
#   jupytext:
#     text_representation:
#       extension: .py
#       format_name: light
#       format_version: '1.5'
#       jupytext_version: 1.16.4
#   kernelspec:
#     display_name: Python 3
#     language: python
#     name: python3
# ---

# # Stock Price Forecast - Model Comparison

# +
import pandas as pd

import price_forecast.data as data
import price_forecast.diagnostics as diag
import price_forecast.evaluation as ev
import price_forecast.models as mod
import price_forecast.visualization as vis
# -

# ## Load Data
#
# The log time series is used for fitting: differencing is incorporated by the models,
# so forecasts come out on the log scale and only need to be exponentiated.

records = data.load_records(data.DATA_DIR / "stock.csv")
ts = data.build_series(records, start="2005-01", end="2019-12", name="stock")
log = data.log_transform(ts)

# ## Comparison Criteria
#
# Models are compared on AIC/BIC in-sample, and on their rolling-origin absolute errors at `horizon=4` out-of-sample,
# starting from 70% of the series. A Diebold-Mariano test tells whether the difference in accuracy is significant:
# if it isn't, the model with fewer parameters wins.

# ## Candidates

# +
candidates = [
    mod.ModelSpec(order=(1, 1, 1), seasonal_order=(0, 1, 1), period=12),
    mod.ModelSpec(order=(0, 1, 1), seasonal_order=(0, 1, 1), period=12),
]

# Automatic alternative, for reference
auto_spec = mod.auto_order(log, d=1, D=1, period=12)
auto_spec
# -

best, search_table = mod.grid_search(log, p_range=range(3), q_range=range(3), d=1, P_range=range(2), Q_range=range(2), D=1, period=12)
search_table.head(10)

# ### Coefficients and residuals

for spec in candidates:
    fitted = mod.fit(log, spec)
    print(spec.label)
    print(fitted.coefficients())
    print(diag.residuals_white_noise_test(fitted))
    _ = diag.fitted_model_diagnostics(fitted)

# ## Model Comparisons

comparison = ev.compare_models(log, candidates, horizon=4)

comparison.information_criteria

comparison.error_summary

comparison.diebold_mariano

print(f"Selected {comparison.selected.label}: {comparison.reason}")

# ### Rolling-origin forecasts vs actuals

for label, fitted in comparison.models.items():
    fig = diag.plot_rolling_origin_predictions(fitted, comparison.errors[label])
    fig.suptitle(label)

# ## Forecast
#
# Next quarter, i.e. 3 months ahead, with 95% confidence bounds in price units.

fc = mod.forecast(comparison.selected_model, horizon=3, alpha=0.05)
fc.to_frame()

_ = vis.plot_forecast(ts, fc, title=f"stock - {comparison.selected.label}")

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

# # Stock Price Forecast - EDA
#
# Monthly reference prices are analysed on the log scale: the variance of the original series grows with its level,
# which the log transform stabilizes. Differencing (plain and seasonal) is then inspected to decide the
# integration orders that the models will incorporate.

# +
import numpy as np
import pandas as pd

import price_forecast.data as data
import price_forecast.diagnostics as diag
# -

# ## Load Data
#
# The export is newest-first and daily/monthly depending on the source, `PriceSeries.from_file` takes care of both.

stock = data.PriceSeries.from_file(data.DATA_DIR / "stock.csv", start="2005-01", end="2019-12", freq="M", price_column="Close")
ts = stock.original

print(f"Number of monthly observations: {ts.shape[0]}")

# ### Original TS

stock.plot_visualizations(original=True)

# ### Log-transformed TS

stock.plot_visualizations(log=True)

# ### 1-Differenced Log-transformed TS

stock.plot_visualizations(log_diffed=True)

# ### 1,12-Differenced Log-transformed TS

stock.plot_visualizations(log_seasonal_diffed=True)

# ## Stationarity

stock.stationarity_tests()

# ## Autocorrelation
#
# Lags outside the +-1.96/sqrt(n) band suggest the candidate AR (PACF) and MA (ACF) orders,
# both non-seasonal (first lags) and seasonal (multiples of 12).

# +
ident = stock.log_seasonal_diffed
n = len(ident)

acf = diag.autocorrelation(ident, max_lag=36)
pacf = diag.partial_autocorrelation(ident, max_lag=36)

pd.DataFrame({
    "lag": np.arange(1, 37),
    "acf": acf,
    "pacf": pacf,
    "acf_significant": np.abs(acf) > diag.significance_band(n),
    "pacf_significant": np.abs(pacf) > diag.significance_band(n),
})
# -

diag.white_noise_test(ident)

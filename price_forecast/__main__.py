import sys

from price_forecast.cli import main

sys.exit(main())

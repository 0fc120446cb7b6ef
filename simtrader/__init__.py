"""simtrader: paper-trading execution and portfolio accounting engine."""

__version__ = "0.1.0"

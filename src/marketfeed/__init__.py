"""marketfeed: multi-provider quote and history aggregation layer."""

__version__ = "0.1.0"

"""Filter registry and minute-bucketed match statistics."""

__version__ = "0.1.0"

"""In-process stream processors, channels, windows and aggregations."""

__version__ = "0.1.0"

__all__ = ["callback", "model", "processors", "window", "windowmanager"]
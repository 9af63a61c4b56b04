"""chatstream — streaming chat completions with live viewer updates."""

__version__ = "0.1.0"

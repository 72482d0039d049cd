"""Terminal study/rest interval timer."""

__version__ = "0.1.0"

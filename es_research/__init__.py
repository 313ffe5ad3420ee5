"""Statistical study of JavaScript syntax compatibility across GitHub projects."""

__version__ = "1.0.0"

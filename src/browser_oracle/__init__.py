"""Browser automation core for driving chat web applications."""

__all__ = ["__version__"]

__version__ = "0.1.0"

"""Multi-carrier shipping price calculation engine."""

__version__ = "0.1.0"

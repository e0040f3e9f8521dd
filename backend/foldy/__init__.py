"""Mobile above-the-fold render and audit service."""

__version__ = "0.3.0"

"""Linux telemetry providers and log formatters for Sigma-based detection."""

__version__ = "0.2.0"
"""Privacy-safe developer telemetry agent for DevLake."""

__version__ = "1.0.0"

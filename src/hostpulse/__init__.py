"""hostpulse - live host telemetry feed with restart/shutdown control."""

__version__ = "0.1.0"

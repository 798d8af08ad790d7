"""Employee time-and-attendance reconciliation and metrics service."""

__version__ = "0.1.0"

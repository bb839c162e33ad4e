"""Live host metrics and auth-log activity over HTTP."""

__version__ = "0.1.0"

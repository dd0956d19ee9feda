"""Multi-backend AI task bridge with workflow orchestration."""

__version__ = "0.1.0"

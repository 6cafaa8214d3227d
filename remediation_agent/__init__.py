"""Static-analysis issue remediation agent."""

__version__ = "0.1.0"

"""windowpilot - schedule 5-hour usage windows around the working day."""

__version__ = "0.1.0"

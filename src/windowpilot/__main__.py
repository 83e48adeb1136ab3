"""Allow running as `python -m windowpilot`."""

from windowpilot.cli.main import app

app()

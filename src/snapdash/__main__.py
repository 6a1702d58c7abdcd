"""Allow ``python -m snapdash``."""

from snapdash.cli import app

app()

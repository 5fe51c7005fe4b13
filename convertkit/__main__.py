"""Allow running as ``python -m convertkit``."""

from convertkit.cli.main import app

if __name__ == "__main__":
    app()

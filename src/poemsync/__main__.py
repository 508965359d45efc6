"""Main entry point for the poemsync package."""

from poemsync.cli import app


if __name__ == "__main__":
    app()

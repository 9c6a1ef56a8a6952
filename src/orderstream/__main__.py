"""orderstream CLI entry point."""

from orderstream.cli import app

if __name__ == "__main__":
    app()

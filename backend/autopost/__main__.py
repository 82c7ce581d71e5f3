"""CLI entry point for python -m autopost"""
from autopost.cli.commands import app

if __name__ == "__main__":
    app()

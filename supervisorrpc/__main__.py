"""
Entry point for the supervisorrpc package.

This module serves as the main entry point when running `python -m supervisorrpc`.
"""

from .cli import cli

if __name__ == "__main__":
    cli()

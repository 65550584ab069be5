"""
Convenience entry point for running spabooking directly.

Usage: python -m spabooking [command] [options]
"""

from .cli.app import app

if __name__ == "__main__":
    app()

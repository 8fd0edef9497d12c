"""
Entry point for running lcapbridge as a module: python -m lcapbridge
"""

from lcapbridge.cli.commands import app

if __name__ == "__main__":
    app()

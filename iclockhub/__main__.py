"""
Entry point for running iclockhub as a module: python -m iclockhub
"""

from iclockhub.cli.commands import app

if __name__ == "__main__":
    app()

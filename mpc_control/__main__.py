"""
Main entry point when running the mpc_control module with python -m.
"""

import sys

from .server import run_cli

if __name__ == "__main__":
    sys.exit(run_cli())

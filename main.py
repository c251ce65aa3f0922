"""
Main entry point for the autocorrelation system.
"""
import sys

from cli_interface import main


if __name__ == "__main__":
    sys.exit(main())

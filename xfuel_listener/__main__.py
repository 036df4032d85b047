"""
Entry point for running the listener as a module.

Usage:
    python -m xfuel_listener
"""

from xfuel_listener.cli import main

if __name__ == "__main__":
    main()

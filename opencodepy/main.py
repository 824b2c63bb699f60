#!/usr/bin/env python3
"""
Main entry point for the opencodepy CLI.

Delegates to the UI layer in opencodepy.ui.cli to keep the console script
mapping stable.
"""

from opencodepy.ui.cli import run as opencodepy


if __name__ == "__main__":
    opencodepy()

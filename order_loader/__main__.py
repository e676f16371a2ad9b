#!/usr/bin/env python3
"""
Package entry point for the Order Loader.

This allows the package to be executed with: python -m order_loader
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())

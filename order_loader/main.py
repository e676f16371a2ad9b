#!/usr/bin/env python3
"""
Main entry point for the Order Loader.
"""

import sys
from order_loader.cli import main


if __name__ == "__main__":
    sys.exit(main())

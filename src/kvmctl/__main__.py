#!/usr/bin/env python3
"""kvmctl - Module entry point."""
import sys

from kvmctl.cli import main

if __name__ == "__main__":
    sys.exit(main())

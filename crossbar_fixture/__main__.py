#!/usr/bin/env python3
"""
Entry point for running crossbar_fixture as a module.
This file enables: python -m crossbar_fixture
"""

import sys

from .main import main

if __name__ == '__main__':
    sys.exit(main())

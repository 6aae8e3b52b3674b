#!/usr/bin/env python3
"""
Entry point for running pg_logical_init as a module.
This file enables: python -m pg_logical_init
"""

from .main import main

if __name__ == '__main__':
    main()

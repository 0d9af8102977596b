#!/usr/bin/env python3
"""Backup runner entry point"""
import sys

from backuprunner.cli import main

if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
"""
Bookshelf maintenance entry point.

Usage:
    python scripts/maintenance.py reconcile --user USER_ID [--kind genres|series|all]
    python scripts/maintenance.py purge-bin --user USER_ID [--retention-days N]
"""

import os
import sys

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from bookshelf.cli import main

if __name__ == '__main__':
    sys.exit(main())

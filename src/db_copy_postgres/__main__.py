#!/usr/bin/env python3
"""
Entry point for the db-copy-postgres CLI command.
This allows the package to be run as: python -m db_copy_postgres
"""

import sys

from .db_copy import main

if __name__ == '__main__':
    sys.exit(main())

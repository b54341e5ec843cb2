#!/usr/bin/env python3
"""Development runner"""
import os
import sys

from serverbackup.cli import main

if __name__ == '__main__':
    # Use development config for local runs
    os.environ.setdefault('SERVERBACKUP_ENV', 'development')
    sys.exit(main())

#!/usr/bin/env python3
"""
Hall Pass Face Recognition - Main Entry Point

Run this file to start the hall pass kiosk.
"""

import sys

from hallpass.main import main

if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
"""Run the modsync installer from a source checkout: `python install.py install ...`."""

from __future__ import annotations

import sys

from modsync.cli import main

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

#!/usr/bin/env python3
"""
Report completeness of the generated sequence tree.

Usage:
  python scripts/check_sequences.py [--json]
"""

from __future__ import annotations

import sys
from pathlib import Path

SERVICE_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(SERVICE_ROOT))

from sequencer.cli import main_check


if __name__ == "__main__":
    sys.exit(main_check())

#!/usr/bin/env python3
"""
Render one model in one material.

Usage:
  python scripts/generate_single_sequence.py --model ring-luxury-001 --material rose-gold [--job-id JOB]
"""

from __future__ import annotations

import sys
from pathlib import Path

SERVICE_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(SERVICE_ROOT))

from sequencer.cli import main_single


if __name__ == "__main__":
    sys.exit(main_single())

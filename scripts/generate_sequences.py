#!/usr/bin/env python3
"""
Render 360° sequences for every model × material.

Usage:
  python scripts/generate_sequences.py
"""

from __future__ import annotations

import sys
from pathlib import Path

SERVICE_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(SERVICE_ROOT))

from sequencer.cli import main_batch


if __name__ == "__main__":
    sys.exit(main_batch())

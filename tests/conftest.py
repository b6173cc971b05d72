"""Pytest configuration for the StreamFlix test-suite."""

from __future__ import annotations

import sys
from pathlib import Path


# Tests import ``app`` straight from the checkout, with or without an
# editable install of the ``streamflix`` distribution.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

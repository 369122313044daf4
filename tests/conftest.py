"""
Configuration for pytest.

Puts the project root on sys.path so the top-level modules import when the
tests run from a plain checkout.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

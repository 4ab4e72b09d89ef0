"""Make the src layout importable, and tests.helpers importable from the repo root."""

import sys
from pathlib import Path

src_path = Path(__file__).parent / "src"
src_str = str(src_path.absolute())

if src_str not in sys.path:
    sys.path.insert(0, src_str)

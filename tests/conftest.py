from __future__ import annotations

import sys
from pathlib import Path

# Tests import `yolo_postkit` from the checkout; without an editable install the
# repo root is not always on sys.path (rootdir-less pytest runs, `python -m unittest`).
REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

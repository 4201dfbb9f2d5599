"""Configuration paths and defaults for blamediff."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("BLAMEDIFF_HOME", str(Path.home() / ".blamediff"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

DEFAULT_FORMAT = "%h %s"
DEFAULT_ABBREV = 7
DEFAULT_JOBS = 4
DEFAULT_LOOKAHEAD = 64
DEFAULT_INLINE_WIDTH = 24

OUT_OF_RANGE_GLYPH = "·"
UNKNOWN_GLYPH = "?"
UNCOMMITTED_GLYPH = "+"

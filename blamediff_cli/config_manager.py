"""Configuration manager for blamediff using TOML files."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Optional

import toml

from . import config
from .errors import ConfigurationFault

logger = logging.getLogger(__name__)

SECTION = "annotate"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "back_to": [],
    "format": config.DEFAULT_FORMAT,
    "abbrev": config.DEFAULT_ABBREV,
    "jobs": config.DEFAULT_JOBS,
    "lookahead": config.DEFAULT_LOOKAHEAD,
    "inline_width": config.DEFAULT_INLINE_WIDTH,
}

# %(...) and %C(...) placeholders must be closed on the same line
_OPEN_PLACEHOLDER = re.compile(r"%C?\(")


@dataclass
class Settings:
    """Effective settings for one run (file defaults overridden by flags)."""

    back_to: List[str] = field(default_factory=list)
    format: str = config.DEFAULT_FORMAT
    abbrev: int = config.DEFAULT_ABBREV
    jobs: int = config.DEFAULT_JOBS
    lookahead: int = config.DEFAULT_LOOKAHEAD
    inline_width: int = config.DEFAULT_INLINE_WIDTH
    inline: bool = False
    inner: List[str] = field(default_factory=list)
    diff_args: Optional[List[str]] = None

    def merged(self, **overrides: Any) -> "Settings":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not config.CONFIG_FILE.exists():
        return {}
    try:
        with open(config.CONFIG_FILE, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", config.CONFIG_FILE, exc)
        return {}


def load_settings() -> Settings:
    """Load ``[annotate]`` settings, falling back to defaults per key.

    Raises:
        ConfigurationFault: if a key has the wrong type or an invalid value.
    """
    values = dict(DEFAULT_SETTINGS)
    section = load_full_config().get(SECTION, {})
    for key, value in section.items():
        if key not in DEFAULT_SETTINGS:
            logger.warning("Unknown key '%s' in [%s] of %s", key, SECTION, config.CONFIG_FILE)
            continue
        values[key] = value

    back_to = values["back_to"]
    if isinstance(back_to, str):
        back_to = [back_to]
    if not isinstance(back_to, list) or not all(isinstance(ref, str) for ref in back_to):
        raise ConfigurationFault(f"'back_to' in {config.CONFIG_FILE} must be a ref or a list of refs")

    for key in ("abbrev", "jobs", "lookahead", "inline_width"):
        if not isinstance(values[key], int) or values[key] < 1:
            raise ConfigurationFault(f"'{key}' in {config.CONFIG_FILE} must be a positive integer")

    settings = Settings(
        back_to=back_to,
        format=str(values["format"]),
        abbrev=values["abbrev"],
        jobs=values["jobs"],
        lookahead=values["lookahead"],
        inline_width=values["inline_width"],
    )
    validate_format(settings.format)
    return settings


def save_settings(settings: Settings) -> None:
    """Write the persistent part of ``settings`` to ``[annotate]``.

    Other sections of the file are preserved.
    """
    full = load_full_config()
    persisted = asdict(settings)
    full[SECTION] = {key: persisted[key] for key in DEFAULT_SETTINGS}
    config.BASE_DIR.mkdir(parents=True, exist_ok=True)
    with open(config.CONFIG_FILE, "w") as f:
        toml.dump(full, f)


def validate_format(fmt: str) -> str:
    """Reject format strings that cannot yield a one-line summary.

    Raises:
        ConfigurationFault: on empty strings, embedded newlines, or an
            unterminated ``%(...)`` / ``%C(...)`` placeholder.
    """
    if not fmt.strip():
        raise ConfigurationFault("Format string is empty")
    unescaped = fmt.replace("%%", "")
    if "\n" in fmt or "%n" in unescaped:
        raise ConfigurationFault(f"Format string must produce a single line: {fmt!r}")
    for match in _OPEN_PLACEHOLDER.finditer(unescaped):
        if ")" not in unescaped[match.end():]:
            raise ConfigurationFault(f"Unterminated placeholder in format string: {fmt!r}")
    return fmt

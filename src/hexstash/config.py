"""Settings from ``hexstash.toml`` in the working directory plus environment overrides."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path

from hexstash.viewport import BYTES_PER_ROW, VISIBLE_ROWS

_log = logging.getLogger(__name__)

CONFIG_NAME = "hexstash.toml"
DEFAULT_QUOTA = 5 * 1024 * 1024


def _project_dir() -> Path:
    return Path.cwd().resolve()


@dataclass
class Settings:
    db_path: Path = field(default_factory=lambda: _project_dir() / "db" / "hexstash.db")
    quota: int = DEFAULT_QUOTA
    bytes_per_row: int = BYTES_PER_ROW
    visible_rows: int = VISIBLE_ROWS
    journal: bool = False

    def __post_init__(self) -> None:
        if self.bytes_per_row <= 0 or self.visible_rows <= 0:
            raise ValueError("bytes_per_row and visible_rows must be positive")
        if self.quota < 0:
            raise ValueError("quota must be >= 0")


def load_settings(root: Path | None = None, env: dict[str, str] | None = None) -> Settings:
    """Read ``[hexstash]`` from ``hexstash.toml`` under ``root`` (default: cwd).

    ``HEXSTASH_DB`` and ``HEXSTASH_QUOTA`` override the file.
    """
    root = root or _project_dir()
    env = os.environ if env is None else env
    values: dict = {}

    toml_path = root / CONFIG_NAME
    if toml_path.exists():
        try:
            doc = tomllib.loads(toml_path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            _log.warning("ignoring %s: %s", toml_path, e)
            doc = {}
        section = doc.get("hexstash", {})
        known = {f.name for f in fields(Settings)}
        for key, value in section.items():
            if key in known:
                values[key] = value
            else:
                _log.warning("unknown setting %r in %s", key, toml_path)

    if env.get("HEXSTASH_DB"):
        values["db_path"] = env["HEXSTASH_DB"]
    if env.get("HEXSTASH_QUOTA"):
        try:
            values["quota"] = int(env["HEXSTASH_QUOTA"])
        except ValueError:
            _log.warning("ignoring non-integer HEXSTASH_QUOTA=%r", env["HEXSTASH_QUOTA"])

    if "db_path" in values:
        db = Path(values["db_path"])
        values["db_path"] = db if db.is_absolute() else root / db
    return Settings(**values)

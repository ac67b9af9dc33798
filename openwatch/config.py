"""Configuration dataclasses for OpenWatch.

Process-level settings come from the environment. Tunable scheduling and
prediction parameters live in the settings store instead, so they can be
changed at runtime through the API.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class SourceConfig:
    """Status source connection settings."""
    url: str = ""
    timeout_s: float = 10.0
    announce_url: str = ""  # optional webhook; empty = log announcements only

    @classmethod
    def from_env(cls):
        return cls(
            url=os.environ.get("OPENWATCH_STATUS_URL", ""),
            timeout_s=float(os.environ.get("OPENWATCH_STATUS_TIMEOUT", cls.timeout_s)),
            announce_url=os.environ.get("OPENWATCH_ANNOUNCE_URL", ""),
        )


@dataclass
class PathConfig:
    """Data directory paths. Single source of truth for database locations."""
    data_dir: Path = field(default_factory=lambda: Path.home() / ".openwatch")

    @classmethod
    def from_env(cls):
        data_dir = os.environ.get("OPENWATCH_DATA_DIR")
        if data_dir:
            return cls(data_dir=Path(data_dir).expanduser())
        return cls()

    @property
    def settings_db(self) -> Path:
        return self.data_dir / "hub.db"

    @property
    def events_db(self) -> Path:
        return self.data_dir / "events.db"

    def ensure_dirs(self):
        """Create the data directory."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


@dataclass
class RetentionConfig:
    """Event log retention. ``None`` keeps events forever."""
    max_days: int | None = None

    @classmethod
    def from_env(cls):
        raw = os.environ.get("OPENWATCH_RETENTION_DAYS", "").strip()
        return cls(max_days=int(raw) if raw else None)


@dataclass
class AppConfig:
    """Top-level config aggregating all sub-configs."""
    source: SourceConfig = field(default_factory=SourceConfig)
    paths: PathConfig = field(default_factory=PathConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)

    @classmethod
    def from_env(cls):
        return cls(
            source=SourceConfig.from_env(),
            paths=PathConfig.from_env(),
            retention=RetentionConfig.from_env(),
        )

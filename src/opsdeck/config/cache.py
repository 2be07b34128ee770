"""
Job cache configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _default_cache_dir() -> Path:
    return Path(os.getenv("OPSDECK_HOME", Path.home() / ".opsdeck")) / "cache"


@dataclass
class JobCacheConfig:
    """Filesystem job cache configuration."""

    enabled: bool = True
    cache_dir: Path = field(default_factory=_default_cache_dir)
    filename: str = "jobs.json"

    # Jobs that started longer ago than this are dropped on save
    keep_days: int = 30

    def __post_init__(self):
        if isinstance(self.cache_dir, str):
            self.cache_dir = Path(self.cache_dir)
        if self.keep_days <= 0:
            raise ValueError("keep_days must be positive")
        if not self.filename:
            raise ValueError("filename cannot be empty")

    @property
    def path(self) -> Path:
        return self.cache_dir / self.filename


__all__ = ["JobCacheConfig"]

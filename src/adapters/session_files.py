"""Filesystem adapter for transport session material.

The session directory is treated as opaque: we only look at whether it
exists, whether it has anything in it, and how old it is.
"""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger(__name__)


class SessionDirectory:
    """Satisfies the core SessionMaterialPort for a directory on disk."""

    def __init__(self, path: str | Path, max_age_days: int = 30) -> None:
        self._path = Path(path)
        self._max_age = timedelta(days=max_age_days)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_dir()

    def age(self, now: datetime) -> Optional[timedelta]:
        if not self.exists():
            return None
        # Telethon rewrites the .session file in place, which leaves the
        # directory mtime untouched.
        newest = max([self._path.stat().st_mtime] + [entry.stat().st_mtime for entry in self._path.iterdir()])
        return now - datetime.fromtimestamp(newest, tz=timezone.utc)

    def is_healthy(self, now: datetime) -> bool:
        """Return True if the session looks usable."""

        try:
            if not self.exists():
                LOGGER.info("No session directory found at %s", self._path)
                return False
            if not any(self._path.iterdir()):
                LOGGER.info("Session directory %s is empty", self._path)
                return False
            age = self.age(now)
            if age is not None and age > self._max_age:
                LOGGER.info("Session is %s days old (stale)", age.days)
                return False
        except OSError as exc:
            LOGGER.info("Session health check failed: %s", exc)
            return False
        return True

    def backup(self, now: Optional[datetime] = None) -> Optional[Path]:
        """Copy the session next to itself; failures are logged, not raised."""

        stamp = int((now or datetime.now(timezone.utc)).timestamp() * 1000)
        target = self._path.with_name(f"{self._path.name}_backup_{stamp}")
        try:
            shutil.copytree(self._path, target)
        except (OSError, shutil.Error) as exc:
            LOGGER.warning("Could not back up session: %s", exc)
            return None
        LOGGER.info("Session backed up to %s", target)
        return target

    def clear(self) -> bool:
        """Back up then remove the session directory. Returns True if removed."""

        if not self.exists():
            LOGGER.info("No session to clear")
            return False
        self.backup()
        try:
            shutil.rmtree(self._path)
        except OSError as exc:
            LOGGER.warning("Session cleanup completed with warnings: %s", exc)
            return False
        LOGGER.info("Session directory cleared")
        return True

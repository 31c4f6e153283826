"""
Mission Archive — the swarm's memory of past missions.

Every completed mission leaves one write-once entry: its goal, its final report
and when it finished. Entries are kept newest first in a single JSON file under
the data directory and are read back as context for the next decomposition.

This is a best-effort cache, not a database: an unreadable file is treated as
an empty archive (with a warning), and a failed write is logged, not raised.

Only uses: pathlib, json, time, structlog and the swarm models.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import structlog
from pydantic import ValidationError

from nexus.swarm.models import MissionArchiveEntry

logger = structlog.get_logger(__name__)


class MissionArchive:
    """
    Append-only, most-recent-first list of completed missions.

    The store prunes the oldest entries to keep at most ``max_entries``.
    Single entries can be deleted explicitly; there is no other mutation.
    """

    def __init__(self, path: Path, max_entries: int = 50) -> None:
        self.path = path
        self.max_entries = max(1, max_entries)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._best_effort_chmod(path.parent, 0o700)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def entries(self, limit: Optional[int] = None) -> list[MissionArchiveEntry]:
        """Return archived missions, newest first."""
        entries = self._read()
        return entries[:limit] if limit is not None else entries

    def get(self, entry_id: str) -> Optional[MissionArchiveEntry]:
        for entry in self._read():
            if entry.entry_id == entry_id:
                return entry
        return None

    def append(self, goal: str, report: str, timestamp: Optional[float] = None) -> Optional[MissionArchiveEntry]:
        """Archive a completed mission. Returns the new entry, or None if the write failed."""
        fields: dict = {"goal": goal, "report": report}
        if timestamp is not None:
            fields["timestamp"] = timestamp
        entry = MissionArchiveEntry(**fields)

        entries = [entry] + self._read()
        if len(entries) > self.max_entries:
            logger.debug("mission_archive.pruned", dropped=len(entries) - self.max_entries)
            entries = entries[: self.max_entries]

        if not self._write(entries):
            return None
        logger.info("mission_archive.appended", entry_id=entry.entry_id, total=len(entries))
        return entry

    def delete(self, entry_id: str) -> bool:
        """Delete one entry by id. Returns False when no such entry exists."""
        entries = self._read()
        remaining = [e for e in entries if e.entry_id != entry_id]
        if len(remaining) == len(entries):
            return False
        if not self._write(remaining):
            return False
        logger.info("mission_archive.deleted", entry_id=entry_id)
        return True

    def __len__(self) -> int:
        return len(self._read())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read(self) -> list[MissionArchiveEntry]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("mission_archive.read_failed", path=str(self.path), error=str(e))
            return []
        if not isinstance(raw, list):
            logger.warning("mission_archive.unexpected_format", path=str(self.path))
            return []

        entries: list[MissionArchiveEntry] = []
        skipped = 0
        for item in raw:
            try:
                entries.append(MissionArchiveEntry.model_validate(item))
            except ValidationError:
                skipped += 1
        if skipped:
            logger.warning("mission_archive.corrupted_entries_skipped", skipped=skipped)
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries

    def _write(self, entries: list[MissionArchiveEntry]) -> bool:
        payload = [e.model_dump() for e in entries]
        tmp_path = self.path.with_suffix(".json.tmp")
        try:
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            self._best_effort_chmod(tmp_path, 0o600)
            tmp_path.replace(self.path)
        except OSError as e:
            logger.error("mission_archive.write_failed", path=str(self.path), error=str(e))
            return False
        return True

    @staticmethod
    def _best_effort_chmod(path: Path, mode: int) -> None:
        """Attempt to harden permissions without failing on unsupported filesystems."""
        try:
            path.chmod(mode)
        except OSError:
            logger.debug("mission_archive.chmod_skipped", path=str(path), mode=oct(mode))

"""Swarm memory — the best-effort archive of completed missions."""
from nexus.memory.mission_archive import MissionArchive

__all__ = ["MissionArchive"]

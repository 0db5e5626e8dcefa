"""Collectors that read local activity signals for one cycle."""

from .commands import ActivityCollector, CommandActivity
from .connections import ConnectionSample, ConnectionTracker
from .devactivity import DevelopmentActivityDetector
from .git_activity import GitActivityExtractor
from .history import HistoryBatch, HistorySource, default_history_sources
from .projects import discover_repositories, scan_projects
from .tools import ToolDetector

__all__ = [
    "ActivityCollector",
    "CommandActivity",
    "ConnectionSample",
    "ConnectionTracker",
    "DevelopmentActivityDetector",
    "GitActivityExtractor",
    "HistoryBatch",
    "HistorySource",
    "ToolDetector",
    "default_history_sources",
    "discover_repositories",
    "scan_projects",
]

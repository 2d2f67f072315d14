"""Services for external API interactions and review bookkeeping."""

from gitfox.services.dedup_guard import DedupGuard
from gitfox.services.fanout import DiffFanoutPool
from gitfox.services.github_auth import build_github_credentials
from gitfox.services.source_control import GitHubSourceControl, SourceControlAPI
from gitfox.services.status_reporter import ReportResult, StatusReporter

__all__ = [
    "DedupGuard",
    "DiffFanoutPool",
    "GitHubSourceControl",
    "ReportResult",
    "SourceControlAPI",
    "StatusReporter",
    "build_github_credentials",
]

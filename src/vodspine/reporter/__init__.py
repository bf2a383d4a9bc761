"""Progress reporters for the CLI: a live rich panel or periodic log lines."""

from vodspine.reporter.rich import RichProgressReporter
from vodspine.reporter.simple import SimpleProgressReporter

__all__ = [
    "RichProgressReporter",
    "SimpleProgressReporter",
]

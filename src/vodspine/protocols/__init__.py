"""Listener protocols for engine events."""

from vodspine.protocols.progress import (
    CallbackProgressReporter,
    NullProgressReporter,
    ProgressEvent,
    ProgressReporter,
    ProgressStage,
    ProgressTally,
)

__all__ = [
    "ProgressStage",
    "ProgressEvent",
    "ProgressTally",
    "ProgressReporter",
    "NullProgressReporter",
    "CallbackProgressReporter",
]

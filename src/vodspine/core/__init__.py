"""Core configuration, errors, checkpoints and crawl state."""

from vodspine.core.checkpoint import (
    CheckpointStore,
    FileCheckpointStore,
    MemoryCheckpointStore,
)
from vodspine.core.phases import TRANSITIONS, CrawlPhase, PhaseTracker
from vodspine.core.state import CheckpointFlusher, CrawlState

__all__ = [
    # Checkpointing
    "CheckpointStore",
    "FileCheckpointStore",
    "MemoryCheckpointStore",
    # State
    "CrawlState",
    "CheckpointFlusher",
    # Phases
    "CrawlPhase",
    "PhaseTracker",
    "TRANSITIONS",
]

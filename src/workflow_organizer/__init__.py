"""Provide the public `workflow_organizer` package exports."""

from __future__ import annotations

from .errors import (
    CannotDeleteLastStage,
    CorruptSnapshot,
    InvalidTarget,
    NotFound,
    OrganizerError,
    PersistenceWriteFailed,
    Unauthorized,
)
from .locator import ContainerKind, Locator
from .organizer import Organizer
from .pipeline import StagePipeline
from .tree import WorkspaceTree

__all__ = [
    "CannotDeleteLastStage",
    "ContainerKind",
    "CorruptSnapshot",
    "InvalidTarget",
    "Locator",
    "NotFound",
    "Organizer",
    "OrganizerError",
    "PersistenceWriteFailed",
    "StagePipeline",
    "Unauthorized",
    "WorkspaceTree",
]

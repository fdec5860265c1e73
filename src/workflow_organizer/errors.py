"""Error taxonomy for the organizer engine.

Every condition here is recoverable: the engine raises before it mutates, so
a caller that catches an :class:`OrganizerError` is always left with a
consistent model.
"""

from __future__ import annotations

from typing import Any, Optional


class OrganizerError(Exception):
    """Base class for all organizer conditions."""

    code = "organizer_error"

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = dict(self.details)
        return data


class NotFound(OrganizerError, LookupError):
    """A stale or unknown id was referenced by a move or delete."""

    code = "not_found"


class InvalidTarget(OrganizerError, ValueError):
    """A drop or move addressed a container that cannot hold the entity."""

    code = "invalid_target"


class CannotDeleteLastStage(OrganizerError):
    code = "cannot_delete_last_stage"


class CorruptSnapshot(OrganizerError):
    """A persisted record could not be decoded."""

    code = "corrupt_snapshot"


class PersistenceWriteFailed(OrganizerError):
    code = "persistence_write_failed"

    def __init__(self, message: str = "", *, key: Optional[str] = None, **details: Any) -> None:
        super().__init__(message, key=key, **details)
        self.key = key


class Unauthorized(OrganizerError):
    """The confirmation token for a destructive action was rejected."""

    code = "unauthorized"

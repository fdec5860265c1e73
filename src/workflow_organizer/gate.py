"""Confirmation gates for destructive pipeline actions.

Deleting a stage and archiving a pipeline item ask the gate first.  The gate
is pluggable so an embedding application can put any policy behind it; the
built-in ones cover a shared secret, a callback, and "always refuse".
"""

from __future__ import annotations

import hashlib
import hmac
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from .errors import Unauthorized


class ConfirmResult(str, Enum):
    AUTHORIZED = "authorized"
    REJECTED = "rejected"


class ConfirmationGate(ABC):
    @abstractmethod
    def confirm(self, token: Optional[str]) -> ConfirmResult:
        raise NotImplementedError

    def require(self, token: Optional[str], action: str) -> None:
        """Raise :class:`Unauthorized` unless *token* confirms *action*."""
        if self.confirm(token) != ConfirmResult.AUTHORIZED:
            logger.warning("Confirmation rejected for {}", action)
            raise Unauthorized(f"Confirmation required to {action}", action=action)
        logger.debug("Confirmation accepted for {}", action)


class SharedSecretGate(ConfirmationGate):
    """Accept a token equal to a configured secret.

    The secret may be given in plain text or as a hex SHA-256 digest; tokens
    are compared in constant time either way.
    """

    def __init__(self, secret: Optional[str] = None, *, secret_sha256: Optional[str] = None) -> None:
        if not secret and not secret_sha256:
            raise ValueError("SharedSecretGate needs a secret or a secret_sha256 digest")
        self._digest = (
            secret_sha256.strip().lower() if secret_sha256 else hashlib.sha256(secret.encode("utf-8")).hexdigest()
        )

    def confirm(self, token: Optional[str]) -> ConfirmResult:
        if not token:
            return ConfirmResult.REJECTED
        candidate = hashlib.sha256(token.encode("utf-8")).hexdigest()
        if hmac.compare_digest(candidate, self._digest):
            return ConfirmResult.AUTHORIZED
        return ConfirmResult.REJECTED


class CallbackGate(ConfirmationGate):
    def __init__(self, callback: Callable[[Optional[str]], bool]) -> None:
        self._callback = callback

    def confirm(self, token: Optional[str]) -> ConfirmResult:
        return ConfirmResult.AUTHORIZED if self._callback(token) else ConfirmResult.REJECTED


class DenyAllGate(ConfirmationGate):
    """Used when nothing is configured: destructive actions stay locked."""

    def confirm(self, token: Optional[str]) -> ConfirmResult:
        return ConfirmResult.REJECTED


class AllowAllGate(ConfirmationGate):
    def confirm(self, token: Optional[str]) -> ConfirmResult:
        return ConfirmResult.AUTHORIZED


def build_gate(confirmation: Optional[dict[str, Any]]) -> ConfirmationGate:
    """Pick a gate from the ``confirmation`` config block.

    ``{"secret": ...}`` or ``{"secret_sha256": ...}`` selects
    :class:`SharedSecretGate`; ``{"mode": "allow"}`` disables confirmation;
    anything else yields :class:`DenyAllGate`.
    """
    block = confirmation if isinstance(confirmation, dict) else {}
    secret = block.get("secret")
    digest = block.get("secret_sha256")
    if isinstance(secret, str) and secret:
        return SharedSecretGate(secret)
    if isinstance(digest, str) and digest:
        return SharedSecretGate(secret_sha256=digest)
    if block.get("mode") == "allow":
        logger.warning("Confirmation gate disabled by configuration")
        return AllowAllGate()
    return DenyAllGate()

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    client = "client"
    server = "server"


class ClientError(ValueError):
    kind = ErrorKind.client


class GoalValidationError(ClientError):
    pass


class ProfileIncomplete(ClientError):
    pass


class NoLinkedAccounts(ClientError):
    pass


class InvalidTransition(ClientError):
    pass


class AnalysisInProgress(ClientError):
    pass


class NotFoundError(ClientError):
    pass


class CategoryNotFound(ClientError):
    pass


class CategoryAmbiguous(ClientError):
    pass


class ServerError(RuntimeError):
    kind = ErrorKind.server


class ProviderError(ServerError):
    pass


class MappingUnavailable(ServerError):
    pass


class PersistenceError(ServerError):
    pass


@dataclass(frozen=True)
class StageResult(Generic[T]):
    """Outcome of one analysis stage: a value, or a tagged error."""

    data: Optional[T] = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> "StageResult[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, exc: Exception) -> "StageResult[T]":
        kind = getattr(exc, "kind", ErrorKind.server)
        return cls(error=str(exc) or exc.__class__.__name__, kind=kind)

    def raise_for_error(self) -> None:
        if self.ok:
            return
        if self.kind == ErrorKind.client:
            raise ClientError(self.error)
        raise ServerError(self.error)

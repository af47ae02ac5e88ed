"""Error taxonomy shared by the PKI coordinator and the slot replicator."""

from __future__ import annotations


class AutopilotError(Exception):
    """Base class for every error raised by pg-autopilot."""


class NotFoundError(AutopilotError):
    """A remote object does not exist (yet)."""


class ConflictError(AutopilotError):
    """Optimistic-concurrency race on a persisted record; re-read and retry."""


class TransientBackendError(AutopilotError):
    """Network or database failure, retried by the next tick or run."""


class KubernetesAPIError(TransientBackendError):
    """Raised when a Kubernetes API call fails for any other reason."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class QueryError(TransientBackendError):
    """Listing replication slots failed."""


class MalformedDataError(AutopilotError):
    """Corrupt certificate or secret bytes."""


class ParseError(MalformedDataError):
    """PEM material could not be decoded."""


class CryptoError(AutopilotError):
    """Key generation or signing failed."""


class PartialApplyError(AutopilotError):
    """A slot mutation failed mid-pass; the next pass retries it."""

    def __init__(self, message: str, slot_name: str) -> None:
        super().__init__(message)
        self.slot_name = slot_name


class CreateError(PartialApplyError):
    pass


class UpdateError(PartialApplyError):
    pass


class DeleteError(PartialApplyError):
    pass

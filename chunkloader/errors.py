"""Exception hierarchy for chunked uploads."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:  # pragma: no cover
    from .dispatch import WriteFailure


class Phase(str, Enum):
    ALLOCATE = "Allocate"
    WRITE = "Write"
    FINALIZE = "Finalize"
    AUTHORITY_TRANSFER = "Authority-Transfer"


class ChunkLoaderError(Exception):
    """Base class for every error raised by chunkloader."""


class ConfigError(ChunkLoaderError):
    """Raised when configuration or key material cannot be resolved."""


class ChunkSizeError(ConfigError):
    """Raised when a message template leaves no room for payload bytes."""


class ProposalError(ChunkLoaderError, ValueError):
    """Raised when a relay round proposal fails validation."""


class ClusterUnreachableError(ChunkLoaderError):
    """Raised when the RPC endpoint does not answer."""


class PhaseError(ChunkLoaderError):
    """A remote call for one lifecycle phase was rejected."""

    def __init__(self, phase: Phase, cause: BaseException | str) -> None:
        self.phase = phase
        self.cause = cause
        super().__init__(f"{phase.value} phase failed: {cause}")


class WriteTransactionsError(ChunkLoaderError):
    """Some chunk writes failed; the account is left writable for a retry."""

    def __init__(self, failed: int, total: int, failures: List["WriteFailure"] | None = None) -> None:
        self.failed = failed
        self.total = total
        self.failures = list(failures or [])
        self.phase = Phase.WRITE
        super().__init__(f"{failed} of {total} write transactions failed")

"""
Completion registry.

Records, at most once per address, that a user completed the task.

Rules applied by register_completion, in order:
1. Shape checks on address, timestamp and transaction hash
2. Timestamp must fall within [now - max age, now + clock skew]
3. A transaction hash that was already consumed is rejected
4. An address that already completed gets its stored record back unchanged
5. Otherwise the record is created and its hash consumed, atomically

Steps 3-5 happen inside a single store call so that concurrent callers
can never observe a consumed hash without its record, or vice versa.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import structlog

from .address import is_evm_address, is_tx_hash, normalize_address, normalize_tx_hash

logger = structlog.get_logger()

ONE_YEAR_SECONDS = 365 * 24 * 60 * 60
CLOCK_SKEW_SECONDS = 5 * 60


# ============================================================================
# Errors
# ============================================================================


class RegistryError(Exception):
    """Base class for registry failures reported back to the caller."""

    kind = "registry_error"
    message = "Registry error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class ValidationError(RegistryError):
    """Malformed address, timestamp or transaction hash."""

    kind = "validation"
    message = "Invalid request"


class TimestampOutOfRange(RegistryError):
    kind = "timestamp_out_of_range"
    message = "Invalid timestamp"


class DuplicateTransactionHash(RegistryError):
    kind = "duplicate_transaction_hash"
    message = "Transaction hash already used"


class InternalError(RegistryError):
    """Unexpected failure while accessing the store."""

    kind = "internal"
    message = "Internal server error"


INVALID_ADDRESS = "Invalid Ethereum address format"
INVALID_TIMESTAMP = "Timestamp must be a positive integer"
INVALID_TX_HASH = "Invalid transaction hash format"


# ============================================================================
# Records
# ============================================================================


@dataclass(frozen=True)
class CompletionRecord:
    """Proof that an address completed the task. Never modified once stored."""

    timestamp: int
    tx_hash: Optional[str]
    recorded_at: datetime


@dataclass(frozen=True)
class RegistrationResult:
    """Current stored record, and whether this call created it."""

    record: CompletionRecord
    created: bool


@dataclass(frozen=True)
class RegistrySnapshot:
    completions: int
    transactions: int
    timestamp: int


# ============================================================================
# Stores
# ============================================================================


class CompletionStore(Protocol):
    """Backend holding completion records and consumed transaction hashes."""

    backend: str

    def get(self, address: str) -> Optional[CompletionRecord]:
        ...

    def get_or_insert(self, address: str, record: CompletionRecord) -> RegistrationResult:
        """
        Atomically insert record for address unless one exists.

        Raises:
            DuplicateTransactionHash: record.tx_hash was already consumed
        """
        ...

    def counts(self) -> tuple[int, int]:
        """Return (completions, consumed transaction hashes)."""
        ...

    def close(self) -> None:
        ...


class MemoryCompletionStore:
    """
    In-process store.

    Both collections sit behind one lock, held only for the compound
    check-then-insert and for reading the two counts together.
    """

    backend = "memory"

    def __init__(self) -> None:
        self._records: dict[str, CompletionRecord] = {}
        self._tx_hashes: set[str] = set()
        self._lock = threading.Lock()

    def get(self, address: str) -> Optional[CompletionRecord]:
        with self._lock:
            return self._records.get(address)

    def get_or_insert(self, address: str, record: CompletionRecord) -> RegistrationResult:
        with self._lock:
            if record.tx_hash and record.tx_hash in self._tx_hashes:
                raise DuplicateTransactionHash()

            existing = self._records.get(address)
            if existing is not None:
                return RegistrationResult(record=existing, created=False)

            self._records[address] = record
            if record.tx_hash:
                self._tx_hashes.add(record.tx_hash)
            return RegistrationResult(record=record, created=True)

    def counts(self) -> tuple[int, int]:
        with self._lock:
            return len(self._records), len(self._tx_hashes)

    def close(self) -> None:
        pass


# ============================================================================
# Registry
# ============================================================================


def _check_address(address: object) -> str:
    if not is_evm_address(address):
        raise ValidationError(INVALID_ADDRESS)
    return normalize_address(address)  # type: ignore[arg-type]


class CompletionRegistry:
    """Completion registration protocol on top of a CompletionStore."""

    def __init__(
        self,
        store: Optional[CompletionStore] = None,
        clock: Callable[[], float] = time.time,
        max_age_seconds: int = ONE_YEAR_SECONDS,
        max_skew_seconds: int = CLOCK_SKEW_SECONDS,
    ):
        self.store: CompletionStore = store if store is not None else MemoryCompletionStore()
        self._clock = clock
        self.max_age_seconds = max_age_seconds
        self.max_skew_seconds = max_skew_seconds

    def now(self) -> int:
        return int(self._clock())

    def is_valid_timestamp(self, timestamp: int) -> bool:
        """Check timestamp against the plausibility window around now."""
        now = self.now()
        return now - self.max_age_seconds <= timestamp <= now + self.max_skew_seconds

    def register_completion(
        self,
        address: str,
        timestamp: int,
        tx_hash: Optional[str] = None,
    ) -> RegistrationResult:
        """
        Record that address completed the task.

        Resubmissions for an address that already completed return the
        first record; the new timestamp and hash are discarded.

        Raises:
            ValidationError: malformed address, timestamp or hash
            TimestampOutOfRange: timestamp outside the accepted window
            DuplicateTransactionHash: tx_hash already used by any address
            InternalError: store failure
        """
        key = _check_address(address)
        if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp < 1:
            raise ValidationError(INVALID_TIMESTAMP)
        if tx_hash is not None and not is_tx_hash(tx_hash):
            raise ValidationError(INVALID_TX_HASH)

        if not self.is_valid_timestamp(timestamp):
            raise TimestampOutOfRange()

        record = CompletionRecord(
            timestamp=timestamp,
            tx_hash=normalize_tx_hash(tx_hash),
            recorded_at=datetime.now(timezone.utc),
        )

        try:
            result = self.store.get_or_insert(key, record)
        except RegistryError:
            raise
        except Exception as e:
            raise InternalError() from e

        if result.created:
            logger.info(
                "task_completed",
                address=key,
                timestamp=record.timestamp,
                tx=record.tx_hash,
            )
        return result

    def get_status(self, address: str) -> Optional[CompletionRecord]:
        """Return the completion record for address, or None if it never completed."""
        key = _check_address(address)
        try:
            return self.store.get(key)
        except Exception as e:
            raise InternalError() from e

    def health_snapshot(self) -> RegistrySnapshot:
        return self._snapshot()

    def stats_snapshot(self) -> RegistrySnapshot:
        return self._snapshot()

    def _snapshot(self) -> RegistrySnapshot:
        try:
            completions, transactions = self.store.counts()
        except Exception as e:
            raise InternalError() from e
        return RegistrySnapshot(
            completions=completions,
            transactions=transactions,
            timestamp=self.now(),
        )

    def close(self) -> None:
        self.store.close()

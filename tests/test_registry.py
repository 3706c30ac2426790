"""
Tests for the completion registry.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from taskapi.registry import (
    CompletionRecord,
    CompletionRegistry,
    DuplicateTransactionHash,
    InternalError,
    MemoryCompletionStore,
    TimestampOutOfRange,
    ValidationError,
)

NOW = 1715418700
DAY = 24 * 60 * 60

ADDR_A = "0x742d35Cc6535C9c80B5D7a8f1C8cd55c26A0f123"
ADDR_B = "0x00000000000000000000000000000000000000b0"
H1 = "0x6539cac36a07f9c3d58ca0a4884c09ad05707f9d247fed3fb6853d1a86466f15"
H2 = "0x" + "ab" * 32


@pytest.fixture
def registry():
    """Registry with a frozen clock."""
    return CompletionRegistry(clock=lambda: NOW)


class TestRegisterCompletion:
    """Tests for register_completion."""

    def test_first_registration_creates_record(self, registry):
        result = registry.register_completion(ADDR_A, 1715418615, H1)
        assert result.created is True
        assert result.record.timestamp == 1715418615
        assert result.record.tx_hash == H1
        assert result.record.recorded_at.tzinfo is not None

    def test_registration_without_tx_hash(self, registry):
        result = registry.register_completion(ADDR_A, 1715418615)
        assert result.created is True
        assert result.record.tx_hash is None

    def test_resubmission_returns_first_record(self, registry):
        """Second call keeps the first timestamp and hash."""
        first = registry.register_completion(ADDR_A, 1715418615, H1)
        second = registry.register_completion(ADDR_A, 1715418699, H2)

        assert second.created is False
        assert second.record == first.record
        assert registry.get_status(ADDR_A) == first.record

    def test_resubmission_does_not_consume_new_hash(self, registry):
        registry.register_completion(ADDR_A, 1715418615, H1)
        registry.register_completion(ADDR_A, 1715418699, H2)

        # H2 was discarded, so another address may still use it
        result = registry.register_completion(ADDR_B, 1715418650, H2)
        assert result.created is True
        assert registry.stats_snapshot().transactions == 2

    def test_address_is_case_insensitive(self, registry):
        registry.register_completion(ADDR_A.upper().replace("0X", "0x"), 1715418615, H1)
        result = registry.register_completion(ADDR_A.lower(), 1715418650)

        assert result.created is False
        assert result.record.timestamp == 1715418615
        assert registry.get_status(ADDR_A) is not None
        assert registry.stats_snapshot().completions == 1

    def test_hash_reused_by_other_address_rejected(self, registry):
        registry.register_completion(ADDR_A, 1715418615, H1)

        with pytest.raises(DuplicateTransactionHash):
            registry.register_completion(ADDR_B, 1715418650, H1)

        assert registry.get_status(ADDR_B) is None

    def test_hash_reused_by_same_address_rejected(self, registry):
        """Hash check runs before the existing-record check."""
        registry.register_completion(ADDR_A, 1715418615, H1)

        with pytest.raises(DuplicateTransactionHash):
            registry.register_completion(ADDR_A, 1715418615, H1)

    def test_hash_comparison_ignores_case(self, registry):
        registry.register_completion(ADDR_A, 1715418615, H1)

        with pytest.raises(DuplicateTransactionHash):
            registry.register_completion(ADDR_B, 1715418650, "0x" + H1[2:].upper())

    def test_addresses_without_hash_do_not_conflict(self, registry):
        registry.register_completion(ADDR_A, 1715418615)
        result = registry.register_completion(ADDR_B, 1715418615)
        assert result.created is True
        assert registry.stats_snapshot().transactions == 0

    def test_concrete_scenario(self, registry):
        first = registry.register_completion(ADDR_A, 1715418615, H1)
        assert (first.record.timestamp, first.record.tx_hash) == (1715418615, H1)

        again = registry.register_completion(ADDR_A, 1715418699, H2)
        assert (again.record.timestamp, again.record.tx_hash) == (1715418615, H1)

        status = registry.get_status(ADDR_A)
        assert (status.timestamp, status.tx_hash) == (1715418615, H1)

        with pytest.raises(DuplicateTransactionHash) as exc_info:
            registry.register_completion(ADDR_B, 1715418700, H1)
        assert str(exc_info.value) == "Transaction hash already used"


class TestTimestampBounds:
    """Tests for the accepted timestamp window."""

    def test_older_than_a_year_rejected(self, registry):
        with pytest.raises(TimestampOutOfRange) as exc_info:
            registry.register_completion(ADDR_A, NOW - 366 * DAY)
        assert str(exc_info.value) == "Invalid timestamp"

    def test_exactly_a_year_old_accepted(self, registry):
        assert registry.register_completion(ADDR_A, NOW - 365 * DAY).created

    def test_four_minutes_ahead_accepted(self, registry):
        assert registry.register_completion(ADDR_A, NOW + 4 * 60).created

    def test_five_minutes_ahead_accepted(self, registry):
        assert registry.register_completion(ADDR_A, NOW + 5 * 60).created

    def test_six_minutes_ahead_rejected(self, registry):
        with pytest.raises(TimestampOutOfRange):
            registry.register_completion(ADDR_A, NOW + 6 * 60)

    def test_rejected_timestamp_stores_nothing(self, registry):
        with pytest.raises(TimestampOutOfRange):
            registry.register_completion(ADDR_A, NOW + 6 * 60, H1)

        assert registry.get_status(ADDR_A) is None
        # H1 is still free
        assert registry.register_completion(ADDR_B, NOW, H1).created

    def test_window_follows_clock(self):
        clock = [NOW]
        registry = CompletionRegistry(clock=lambda: clock[0])
        ts = NOW + 10 * 60

        with pytest.raises(TimestampOutOfRange):
            registry.register_completion(ADDR_A, ts)

        clock[0] = NOW + 6 * 60
        assert registry.register_completion(ADDR_A, ts).created

    def test_custom_window(self):
        registry = CompletionRegistry(clock=lambda: NOW, max_age_seconds=60, max_skew_seconds=0)

        with pytest.raises(TimestampOutOfRange):
            registry.register_completion(ADDR_A, NOW - 61)
        with pytest.raises(TimestampOutOfRange):
            registry.register_completion(ADDR_A, NOW + 1)
        assert registry.register_completion(ADDR_A, NOW).created


class TestValidation:
    """Shape checks done by the registry itself."""

    @pytest.mark.parametrize(
        "address",
        [
            "0x1234",
            "742d35Cc6535C9c80B5D7a8f1C8cd55c26A0f123",
            "0x742d35Cc6535C9c80B5D7a8f1C8cd55c26A0f12g",
            "",
            ADDR_A + "\n",
            " " + ADDR_A,
            ADDR_A + " ",
        ],
    )
    def test_invalid_address(self, registry, address):
        with pytest.raises(ValidationError) as exc_info:
            registry.register_completion(address, NOW)
        assert str(exc_info.value) == "Invalid Ethereum address format"

    @pytest.mark.parametrize("timestamp", [0, -5, True])
    def test_invalid_timestamp(self, registry, timestamp):
        with pytest.raises(ValidationError) as exc_info:
            registry.register_completion(ADDR_A, timestamp)
        assert str(exc_info.value) == "Timestamp must be a positive integer"

    @pytest.mark.parametrize("tx_hash", ["0x1234", H1[2:], "", H1 + "00", H1 + "\n", " " + H1])
    def test_invalid_tx_hash(self, registry, tx_hash):
        with pytest.raises(ValidationError) as exc_info:
            registry.register_completion(ADDR_A, NOW, tx_hash)
        assert str(exc_info.value) == "Invalid transaction hash format"

    def test_get_status_invalid_address(self, registry):
        with pytest.raises(ValidationError):
            registry.get_status("not-an-address")

    def test_trailing_newline_cannot_bypass_invariants(self, registry):
        """A newline suffix must not create a second key for a used hash or address."""
        registry.register_completion(ADDR_A, 1715418615, H1)

        with pytest.raises(ValidationError):
            registry.register_completion(ADDR_B, NOW, H1 + "\n")
        with pytest.raises(ValidationError):
            registry.register_completion(ADDR_A + "\n", NOW)
        with pytest.raises(ValidationError):
            registry.get_status(ADDR_A + "\n")

        snapshot = registry.stats_snapshot()
        assert (snapshot.completions, snapshot.transactions) == (1, 1)


class TestGetStatus:
    """Tests for get_status."""

    def test_unknown_address_returns_none(self, registry):
        assert registry.get_status(ADDR_B) is None

    def test_returns_stored_record(self, registry):
        created = registry.register_completion(ADDR_A, 1715418615, H1).record
        assert registry.get_status(ADDR_A) == created


class TestSnapshots:
    """Tests for health and stats snapshots."""

    def test_empty_registry(self, registry):
        snapshot = registry.health_snapshot()
        assert snapshot.completions == 0
        assert snapshot.transactions == 0
        assert snapshot.timestamp == NOW

    def test_counts(self, registry):
        registry.register_completion(ADDR_A, NOW, H1)
        registry.register_completion(ADDR_B, NOW)

        snapshot = registry.stats_snapshot()
        assert snapshot.completions == 2
        assert snapshot.transactions == 1


class TestConcurrency:
    """Concurrent registrations against the in-memory store."""

    def test_same_address_single_winner(self, registry):
        workers = 16
        hashes = [f"0x{i:064x}" for i in range(1, workers + 1)]
        barrier = threading.Barrier(workers)

        def register(tx_hash):
            barrier.wait()
            return registry.register_completion(ADDR_A, NOW, tx_hash)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(register, hashes))

        records = {r.record for r in results}
        assert len(records) == 1
        assert sum(r.created for r in results) == 1

        winner = records.pop()
        assert winner.tx_hash in hashes
        assert registry.stats_snapshot().completions == 1
        assert registry.stats_snapshot().transactions == 1

    def test_distinct_addresses_all_recorded(self, registry):
        def register(i):
            return registry.register_completion(f"0x{i:040x}", NOW, f"0x{i:064x}")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(register, range(1, 33)))

        assert all(r.created for r in results)
        snapshot = registry.stats_snapshot()
        assert snapshot.completions == 32
        assert snapshot.transactions == 32


class FailingStore(MemoryCompletionStore):
    def get_or_insert(self, address, record):
        raise RuntimeError("disk on fire")

    def get(self, address):
        raise RuntimeError("disk on fire")


class TestInternalError:
    """Unexpected store failures surface as InternalError."""

    def test_register_wraps_store_failure(self):
        registry = CompletionRegistry(store=FailingStore(), clock=lambda: NOW)

        with pytest.raises(InternalError) as exc_info:
            registry.register_completion(ADDR_A, NOW)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_get_status_wraps_store_failure(self):
        registry = CompletionRegistry(store=FailingStore(), clock=lambda: NOW)

        with pytest.raises(InternalError):
            registry.get_status(ADDR_A)


def test_records_are_immutable():
    record = CompletionRecord(timestamp=1, tx_hash=None, recorded_at=None)
    with pytest.raises(AttributeError):
        record.timestamp = 2

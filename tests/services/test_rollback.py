"""
Tests for compensating rollback after failures under the validating lock.

A store subclass injects PersistenceFailureError on chosen operations so the
failure lands after stock has already been written.
"""

from collections import Counter
from decimal import Decimal

import pytest

from production_config.schema import ProductionConfig, RollbackPolicy
from production_kernel.domain.dtos import EntryStatus
from production_kernel.exceptions import PersistenceFailureError
from production_kernel.services.sql_store import SqlProductionStore
from production_kernel.services.validation_service import ValidationService, ValidationStatus


class FlakyStore(SqlProductionStore):
    """
    ``failures`` maps an operation to how many more calls of it fail.
    ``then`` arms further failures once an operation has failed.
    """

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.failures: dict[str, int] = {}
        self.then: dict[str, dict[str, int]] = {}
        self.calls: Counter = Counter()

    def _inject(self, operation: str) -> None:
        self.calls[operation] += 1
        remaining = self.failures.get(operation, 0)
        if remaining:
            self.failures[operation] = remaining - 1
            self.failures.update(self.then.pop(operation, {}))
            raise PersistenceFailureError(operation, "injected failure")

    def finalize_entry(self, *args, **kwargs):
        self._inject("finalize_entry")
        return super().finalize_entry(*args, **kwargs)

    def upsert_stock_unit(self, *args, **kwargs):
        self._inject("upsert_stock_unit")
        return super().upsert_stock_unit(*args, **kwargs)

    def save_consumption(self, *args, **kwargs):
        self._inject("save_consumption")
        return super().save_consumption(*args, **kwargs)

    def cas_update_entry_status(self, *args, **kwargs):
        self._inject("cas_update_entry_status")
        return super().cas_update_entry_status(*args, **kwargs)


class CrashingStore(SqlProductionStore):
    """Raises a non-kernel error on the first consumption write."""

    def save_consumption(self, *args, **kwargs):
        raise RuntimeError("worker crashed")


@pytest.fixture
def flaky(session_factory):
    return FlakyStore(session_factory)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def flaky_validation(flaky, authorizer, clock, sleeps):
    config = ProductionConfig(rollback=RollbackPolicy(max_attempts=3, backoff_seconds=0.01))
    return ValidationService(flaky, authorizer, config=config, clock=clock, sleep=sleeps.append)


def assert_back_to_draft(store, built):
    assert store.get_entry(built.entry.id).status == EntryStatus.DRAFT
    unit = store.get_stock_units([built.unit.id])[built.unit.id]
    assert (unit.pieces, unit.volume, unit.status) == (
        built.unit.pieces,
        built.unit.volume,
        built.unit.status,
    )
    assert store.list_stock_units_by_origin(built.entry.id) == []
    assert store.list_consumptions(built.entry.id) == []


class TestRollbackAfterWrites:
    def test_failed_finalize_undoes_everything(self, flaky_validation, flaky, producer, make_entry):
        built = make_entry()
        flaky.failures["finalize_entry"] = 1

        result = flaky_validation.submit(producer, built.entry.id)

        assert result.status == ValidationStatus.FAILED
        assert result.code == "PERSISTENCE_FAILURE"
        assert_back_to_draft(flaky, built)

    def test_failed_finalize_on_revalidation_restores_previous_validation(
        self, flaky_validation, flaky, producer, editor, make_entry
    ):
        built = make_entry()
        assert flaky_validation.submit(producer, built.entry.id).is_success
        units_before = flaky.list_stock_units_by_origin(built.entry.id)
        input_before = flaky.get_stock_units([built.unit.id])[built.unit.id]
        consumption_before = flaky.list_consumptions(built.entry.id)

        flaky.failures["finalize_entry"] = 1
        result = flaky_validation.submit(editor, built.entry.id)

        assert result.code == "PERSISTENCE_FAILURE"
        assert flaky.get_entry(built.entry.id).status == EntryStatus.VALIDATED
        assert flaky.list_stock_units_by_origin(built.entry.id) == units_before
        assert flaky.get_stock_units([built.unit.id])[built.unit.id] == input_before
        assert flaky.list_consumptions(built.entry.id) == consumption_before

    def test_transient_inverse_failures_are_retried_with_backoff(
        self, flaky_validation, flaky, producer, make_entry, sleeps
    ):
        built = make_entry()
        flaky.failures["finalize_entry"] = 1
        flaky.then["finalize_entry"] = {"upsert_stock_unit": 2}

        result = flaky_validation.submit(producer, built.entry.id)

        assert result.status == ValidationStatus.FAILED
        assert sleeps == [0.01, 0.02]
        assert_back_to_draft(flaky, built)

    def test_exhausted_retries_report_partial_recovery(
        self, flaky_validation, flaky, producer, make_entry, captured_logs
    ):
        built = make_entry()
        flaky.failures["finalize_entry"] = 1
        flaky.then["finalize_entry"] = {"upsert_stock_unit": 100}

        result = flaky_validation.submit(producer, built.entry.id)

        assert result.status == ValidationStatus.PARTIALLY_RECOVERED
        assert result.code == "PARTIALLY_RECOVERED"
        assert result.original_code == "PERSISTENCE_FAILURE"
        assert built.unit.id in result.unrecovered_unit_ids
        assert not result.is_success
        assert flaky.get_entry(built.entry.id).status == EntryStatus.DRAFT
        failed_writes = [r for r in captured_logs() if r["message"] == "rollback_write_failed"]
        assert failed_writes and failed_writes[0]["level"] == "ERROR"

    def test_lock_left_held_is_recovered_by_revert(
        self, flaky_validation, flaky, producer, make_entry
    ):
        built = make_entry()
        flaky.failures["finalize_entry"] = 1
        flaky.then["finalize_entry"] = {"cas_update_entry_status": 100}

        result = flaky_validation.submit(producer, built.entry.id)

        assert result.status == ValidationStatus.PARTIALLY_RECOVERED
        assert flaky.get_entry(built.entry.id).status == EntryStatus.VALIDATING

        flaky.failures.clear()
        reverted = flaky_validation.revert(producer, built.entry.id)

        assert reverted.is_success, reverted.message
        assert_back_to_draft(flaky, built)


class TestUnexpectedErrors:
    def test_non_kernel_error_is_rolled_back_and_raised(self, session_factory, authorizer, config, clock, producer, make_entry):
        crashing = CrashingStore(session_factory)
        service = ValidationService(crashing, authorizer, config=config, clock=clock, sleep=lambda _s: None)
        built = make_entry()

        with pytest.raises(RuntimeError, match="worker crashed"):
            service.submit(producer, built.entry.id)

        assert_back_to_draft(crashing, built)

    def test_deduction_is_undone_when_consumption_write_fails(
        self, flaky_validation, flaky, producer, make_entry
    ):
        built = make_entry(volume_used=Decimal("0.4"))
        flaky.failures["save_consumption"] = 1

        result = flaky_validation.submit(producer, built.entry.id)

        assert result.code == "PERSISTENCE_FAILURE"
        assert_back_to_draft(flaky, built)

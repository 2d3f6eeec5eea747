from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from leasebill.exceptions import (
    ConcurrencyConflict,
    DuplicateFinalStatementError,
    InvalidPeriodError,
    NegativeConsumptionError,
    NotFoundError,
)
from leasebill.models.audit_log import AuditEventType
from leasebill.models.utility import UtilityStatement, UtilityType
from leasebill.services.utility_calculation import UtilityCalculation
from leasebill.services.utility_statement_service import UtilityStatementService


def _statement(**overrides) -> UtilityStatement:
    defaults = dict(
        lease_id=1,
        utility_type=UtilityType.WATER,
        period_start=date(2025, 4, 1),
        period_end=date(2025, 4, 30),
        direct_bill_amount=Decimal("85.00"),
    )
    defaults.update(overrides)
    return UtilityStatement(**defaults)


class TestUtilityStatementService:
    @pytest.fixture(autouse=True)
    def _fixtures(self, sample_lease, ctx):
        self.ctx = ctx
        self.mock_lease_repo = MagicMock()
        self.mock_lease_repo.get_by_id.return_value = sample_lease()
        self.mock_statement_repo = MagicMock()
        self.mock_statement_repo.list_versions.return_value = []
        self.mock_statement_repo.create.side_effect = lambda s, ctx: s.model_copy(update={"id": 40})
        self.mock_statement_repo.update.side_effect = lambda s, ctx: s.model_copy(update={"row_version": s.row_version + 1})
        self.mock_utility = MagicMock()
        self.mock_utility.calculate_statement.return_value = UtilityCalculation(
            utility_type=UtilityType.WATER,
            is_meter_based=False,
            total_amount=Decimal("85.00"),
            description="Water - direct billing",
        )
        self.mock_audit = MagicMock()
        self.service = UtilityStatementService(
            self.mock_lease_repo, self.mock_statement_repo, self.mock_utility, self.mock_audit, max_retries=3
        )

    # --- record ---

    def test_first_version(self):
        result = self.service.record_statement(_statement(), self.ctx)

        assert result.id == 40
        assert result.version == 1
        assert result.is_final is False
        assert result.total_amount == Decimal("85.00")
        self.mock_utility.calculate_statement.assert_called_once()
        args, _ = self.mock_audit.safe_log.call_args
        assert args[0] == AuditEventType.UTILITY_STATEMENT_RECORD

    def test_correction_gets_next_version(self):
        self.mock_statement_repo.list_versions.return_value = [
            _statement(id=1, version=1),
            _statement(id=2, version=2, is_final=True),
        ]

        result = self.service.record_statement(_statement(direct_bill_amount=Decimal("90")), self.ctx)

        assert result.version == 3
        assert result.is_final is False

    def test_record_ignores_caller_final_flag(self):
        result = self.service.record_statement(_statement(is_final=True, id=77), self.ctx)

        created = self.mock_statement_repo.create.call_args.args[0]
        assert created.id is None
        assert created.is_final is False
        assert result.is_final is False

    def test_stores_calculated_units(self):
        self.mock_utility.calculate_statement.return_value = UtilityCalculation(
            utility_type=UtilityType.ELECTRICITY,
            is_meter_based=True,
            units_consumed=Decimal("80"),
            total_amount=Decimal("490.00"),
            description="Electricity - 80 units (Residential)",
            rate_plan_id=3,
        )
        statement = _statement(
            utility_type=UtilityType.ELECTRICITY,
            is_meter_based=True,
            previous_reading=Decimal("100"),
            current_reading=Decimal("180"),
            direct_bill_amount=None,
        )

        result = self.service.record_statement(statement, self.ctx)

        assert result.units_consumed == Decimal("80")
        assert result.total_amount == Decimal("490.00")
        assert result.rate_plan_id == 3

    def test_calculation_error_writes_nothing(self):
        self.mock_utility.calculate_statement.side_effect = NegativeConsumptionError(Decimal("180"), Decimal("100"))

        with pytest.raises(NegativeConsumptionError):
            self.service.record_statement(_statement(), self.ctx)
        self.mock_statement_repo.create.assert_not_called()

    def test_version_race_retries(self):
        self.mock_statement_repo.list_versions.side_effect = [[], [_statement(id=1, version=1)]]
        created = []

        def create(statement, ctx):
            if not created:
                created.append(statement)
                raise ConcurrencyConflict("version taken")
            return statement.model_copy(update={"id": 41})

        self.mock_statement_repo.create.side_effect = create

        result = self.service.record_statement(_statement(), self.ctx)

        assert result.version == 2
        assert self.mock_statement_repo.create.call_count == 2

    def test_version_race_gives_up(self):
        self.mock_statement_repo.create.side_effect = ConcurrencyConflict("version taken")

        with pytest.raises(ConcurrencyConflict):
            self.service.record_statement(_statement(), self.ctx)
        assert self.mock_statement_repo.create.call_count == 3

    def test_lease_not_found(self):
        self.mock_lease_repo.get_by_id.return_value = None

        with pytest.raises(NotFoundError, match="Lease"):
            self.service.record_statement(_statement(), self.ctx)

    def test_invalid_period(self):
        with pytest.raises(InvalidPeriodError):
            self.service.record_statement(
                _statement(period_start=date(2025, 4, 30), period_end=date(2025, 4, 1)), self.ctx
            )

    # --- finalize ---

    def test_finalize(self):
        self.mock_statement_repo.get_by_id.return_value = _statement(id=40, version=2)
        self.mock_statement_repo.get_final.return_value = None

        result = self.service.finalize(40, self.ctx)

        assert result.is_final is True
        args, kwargs = self.mock_audit.safe_log.call_args
        assert args[0] == AuditEventType.UTILITY_STATEMENT_FINALIZE
        assert kwargs["previous_state"]["is_final"] is False
        assert kwargs["new_state"]["is_final"] is True

    def test_finalize_already_final_is_noop(self):
        statement = _statement(id=40, is_final=True)
        self.mock_statement_repo.get_by_id.return_value = statement

        assert self.service.finalize(40, self.ctx) is statement
        self.mock_statement_repo.update.assert_not_called()

    def test_finalize_second_version_rejected(self):
        self.mock_statement_repo.get_by_id.return_value = _statement(id=41, version=2)
        self.mock_statement_repo.get_final.return_value = _statement(id=40, version=1, is_final=True)

        with pytest.raises(DuplicateFinalStatementError, match="Version 1 is already final"):
            self.service.finalize(41, self.ctx)
        self.mock_statement_repo.update.assert_not_called()

    def test_finalize_not_found(self):
        self.mock_statement_repo.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            self.service.finalize(40, self.ctx)

    def test_queries_delegate(self):
        period = _statement().period
        self.service.list_versions(1, UtilityType.WATER, period)
        self.service.get_final(1, UtilityType.WATER, period)

        self.mock_statement_repo.list_versions.assert_called_once_with(1, UtilityType.WATER, period)
        self.mock_statement_repo.get_final.assert_called_once_with(1, UtilityType.WATER, period)

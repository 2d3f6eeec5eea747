from __future__ import annotations

import logging

from leasebill.exceptions import ConcurrencyConflict, DuplicateFinalStatementError, NotFoundError
from leasebill.models.audit_log import AuditEventType
from leasebill.models.context import OperationContext
from leasebill.models.period import BillingPeriod
from leasebill.models.utility import UtilityStatement, UtilityType
from leasebill.repositories.base import LeaseRepository, UtilityStatementRepository
from leasebill.services.audit_service import AuditService
from leasebill.services.serializers import serialize_utility_statement
from leasebill.services.utility_calculation import UtilityCalculationService
from leasebill.settings import settings

logger = logging.getLogger(__name__)


class UtilityStatementService:
    """Versioned utility statements.

    Every correction of a lease/utility/period is stored as a new draft
    version; exactly one version may be final, and only final versions reach
    an invoice. A statement for a period that was already invoiced is stored
    like any other and is picked up the next time that period's draft is
    generated.
    """

    def __init__(
        self,
        lease_repo: LeaseRepository,
        statement_repo: UtilityStatementRepository,
        utility_service: UtilityCalculationService,
        audit_service: AuditService | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.lease_repo = lease_repo
        self.statement_repo = statement_repo
        self.utility_service = utility_service
        self.audit_service = audit_service
        self.max_retries = max_retries or settings.generation_max_retries

    def record_statement(self, statement: UtilityStatement, ctx: OperationContext) -> UtilityStatement:
        statement.period.validate_bounds()
        lease = self.lease_repo.get_by_id(statement.lease_id)
        if lease is None:
            raise NotFoundError("Lease", statement.lease_id)
        calc = self.utility_service.calculate_statement(lease.org_id, statement)

        attempt = 1
        while True:
            versions = self.statement_repo.list_versions(lease.id, statement.utility_type, statement.period)
            draft = statement.model_copy(
                update={
                    "id": None,
                    "version": max((v.version for v in versions), default=0) + 1,
                    "is_final": False,
                    "units_consumed": calc.units_consumed,
                    "total_amount": calc.total_amount,
                    "rate_plan_id": calc.rate_plan_id,
                    "row_version": 1,
                }
            )
            try:
                saved = self.statement_repo.create(draft, ctx)
                break
            except ConcurrencyConflict:
                if attempt >= self.max_retries:
                    raise
                logger.warning("Statement version race for lease %s, retrying (%d/%d)", lease.id, attempt, self.max_retries)
                attempt += 1

        logger.info(
            "Recorded %s statement v%d for lease %s period %s: total=%s",
            saved.utility_type.value,
            saved.version,
            lease.id,
            saved.period.label,
            saved.total_amount,
        )
        if self.audit_service is not None:
            self.audit_service.safe_log(
                AuditEventType.UTILITY_STATEMENT_RECORD,
                ctx=ctx,
                entity_type="utility_statement",
                entity_id=saved.id,
                entity_uuid=saved.uuid,
                new_state=serialize_utility_statement(saved),
            )
        return saved

    def finalize(self, statement_id: int, ctx: OperationContext) -> UtilityStatement:
        statement = self.statement_repo.get_by_id(statement_id)
        if statement is None:
            raise NotFoundError("UtilityStatement", statement_id)
        if statement.is_final:
            return statement

        current = self.statement_repo.get_final(statement.lease_id, statement.utility_type, statement.period)
        if current is not None:
            raise DuplicateFinalStatementError(
                f"Version {current.version} is already final for lease {statement.lease_id} "
                f"{statement.utility_type.value} {statement.period.label}",
                field="is_final",
            )

        before = serialize_utility_statement(statement)
        saved = self.statement_repo.update(statement.model_copy(update={"is_final": True}), ctx)
        logger.info("Finalized %s statement v%d for lease %s", saved.utility_type.value, saved.version, saved.lease_id)
        if self.audit_service is not None:
            self.audit_service.safe_log(
                AuditEventType.UTILITY_STATEMENT_FINALIZE,
                ctx=ctx,
                entity_type="utility_statement",
                entity_id=saved.id,
                entity_uuid=saved.uuid,
                previous_state=before,
                new_state=serialize_utility_statement(saved),
            )
        return saved

    def list_versions(self, lease_id: int, utility_type: UtilityType, period: BillingPeriod) -> list[UtilityStatement]:
        return self.statement_repo.list_versions(lease_id, utility_type, period)

    def get_final(self, lease_id: int, utility_type: UtilityType, period: BillingPeriod) -> UtilityStatement | None:
        return self.statement_repo.get_final(lease_id, utility_type, period)

from unittest.mock import MagicMock

from leasebill.models.audit_log import AuditEventType, AuditLog
from leasebill.services.audit_service import AuditService


class TestAuditServiceLog:
    def setup_method(self):
        self.mock_repo = MagicMock()
        self.service = AuditService(self.mock_repo)

    def test_log_creates_entry(self, ctx):
        self.mock_repo.create.return_value = AuditLog(
            id=1,
            uuid="abc123",
            event_type=AuditEventType.INVOICE_ISSUE,
            actor_username="tester",
            source="system",
            entity_type="invoice",
            entity_id=10,
        )

        result = self.service.log(
            AuditEventType.INVOICE_ISSUE,
            ctx=ctx,
            entity_type="invoice",
            entity_id=10,
            entity_uuid="xyz",
            new_state={"status": "issued"},
        )

        assert result.event_type == AuditEventType.INVOICE_ISSUE
        self.mock_repo.create.assert_called_once()
        created_log = self.mock_repo.create.call_args[0][0]
        assert created_log.event_type == "invoice.issue"
        assert created_log.actor_id is None
        assert created_log.actor_username == "tester"
        assert created_log.source == "system"
        assert created_log.entity_type == "invoice"
        assert created_log.entity_id == 10
        assert created_log.entity_uuid == "xyz"
        assert created_log.new_state == {"status": "issued"}
        assert created_log.previous_state is None
        assert created_log.metadata == {}
        assert created_log.created_at == ctx.now()

    def test_log_with_metadata(self):
        self.mock_repo.create.return_value = AuditLog(id=1, event_type="test", metadata={"reason": "dup"})
        self.service.log(
            "test",
            metadata={"reason": "dup"},
        )
        created_log = self.mock_repo.create.call_args[0][0]
        assert created_log.metadata == {"reason": "dup"}

    def test_log_without_context_uses_system(self):
        self.mock_repo.create.return_value = AuditLog(id=1, event_type="test")
        self.service.log("test")
        created_log = self.mock_repo.create.call_args[0][0]
        assert created_log.actor_username == "system"
        assert created_log.source == "system"
        assert created_log.created_at is not None

    def test_log_with_both_states(self, ctx):
        self.mock_repo.create.return_value = AuditLog(id=1, event_type=AuditEventType.INVOICE_VOID)
        self.service.log(
            AuditEventType.INVOICE_VOID,
            ctx=ctx,
            previous_state={"status": "issued"},
            new_state={"status": "voided"},
        )
        created_log = self.mock_repo.create.call_args[0][0]
        assert created_log.previous_state == {"status": "issued"}
        assert created_log.new_state == {"status": "voided"}


class TestAuditServiceSafeLog:
    def setup_method(self):
        self.mock_repo = MagicMock()
        self.service = AuditService(self.mock_repo)

    def test_safe_log_returns_entry(self):
        self.mock_repo.create.return_value = AuditLog(id=1, event_type="test")
        assert self.service.safe_log("test").id == 1

    def test_safe_log_swallows_errors(self):
        self.mock_repo.create.side_effect = RuntimeError("DB down")
        assert self.service.safe_log("test") is None


class TestAuditServiceQueries:
    def setup_method(self):
        self.mock_repo = MagicMock()
        self.service = AuditService(self.mock_repo)

    def test_list_by_entity(self):
        self.mock_repo.list_by_entity.return_value = []
        assert self.service.list_by_entity("invoice", 1) == []
        self.mock_repo.list_by_entity.assert_called_once_with("invoice", 1)

    def test_list_recent(self):
        self.mock_repo.list_recent.return_value = []
        self.service.list_recent(limit=10)
        self.mock_repo.list_recent.assert_called_once_with(10)

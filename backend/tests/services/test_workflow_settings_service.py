"""
Tests for adops/services/workflow_settings_service.py
"""
import pytest

from adops.models.workflow import WorkflowSetting
from adops.services.workflow_settings_service import WorkflowSettingsService
from workflow_core.errors import NotFoundError, ValidationError


class TestDefaults:

    def test_defaults_without_rows(self, tenant, settings_service):
        rules = settings_service.get(tenant, "approval.rules")
        assert rules["campaignApproval"] == {"enabled": True, "triggerThreshold": 90,
                                             "requiredRoles": ["admin", "master"]}
        assert rules["rejectionFallback"] == 65
        assert settings_service.milestone_thresholds(tenant).auto_reservation == 90

    def test_get_all_lists_every_key(self, tenant, settings_service):
        assert set(settings_service.get_all(tenant)) == {
            "milestone.thresholds", "approval.rules", "notifications.enabled",
            "rate_card.delta_tracking",
        }

    def test_talent_and_rate_defaults(self, tenant, settings_service):
        talent = settings_service.approval_rules(tenant).talent_approval
        assert (talent.enabled, talent.fallback_approver) == (True, "producer")
        assert talent.required_for_types == ["host_read", "endorsement"]
        assert settings_service.get(tenant, "rate_card.delta_tracking") == {
            "enabled": True, "thresholdPercent": 10, "requireApprovalAbove": 20,
        }

    def test_configured_rejection_fallback_default(self, db_session, cache, tenant):
        service = WorkflowSettingsService(db_session, cache, default_rejection_fallback=35)
        assert service.approval_rules(tenant).rejection_fallback == 35

    def test_unknown_key(self, tenant, settings_service):
        with pytest.raises(NotFoundError):
            settings_service.get(tenant, "billing.cycle")


class TestSet:

    def test_partial_update_merges(self, db_session, tenant, settings_service):
        settings_service.set(tenant, "approval.rules", {"campaignApproval": {"triggerThreshold": 65}}, updated_by=2)

        rules = settings_service.approval_rules(tenant)
        assert rules.campaign_approval.trigger_threshold == 65
        assert rules.campaign_approval.enabled is True
        row = db_session.query(WorkflowSetting).one()
        assert row.updated_by == 2

    def test_snake_case_keys_accepted(self, tenant, settings_service):
        settings_service.set(tenant, "notifications.enabled", {"in_app": False})
        assert settings_service.get(tenant, "notifications.enabled")["inApp"] is False

    def test_write_invalidates_cache(self, tenant, cache, settings_service):
        settings_service.approval_rules(tenant)
        assert cache.size(tenant.org_id) == 1
        settings_service.set(tenant, "milestone.thresholds", {"auto_reservation": 65})
        assert cache.size(tenant.org_id) == 0
        assert settings_service.milestone_thresholds(tenant).auto_reservation == 65

    def test_invalid_value(self, tenant, settings_service):
        with pytest.raises(ValidationError) as exc:
            settings_service.set(tenant, "approval.rules", {"rejectionFallback": 50})
        assert "approval.rules.rejectionFallback" in exc.value.field_errors

    def test_out_of_range(self, tenant, settings_service):
        with pytest.raises(ValidationError):
            settings_service.set(tenant, "milestone.thresholds", {"auto_reservation": 120})

    def test_unknown_field(self, tenant, settings_service):
        with pytest.raises(ValidationError):
            settings_service.set(tenant, "milestone.thresholds", {"order_creation": 100})

    def test_tenants_are_isolated(self, tenant, other_tenant, settings_service):
        settings_service.set(tenant, "approval.rules", {"rejectionFallback": 10})
        assert settings_service.approval_rules(other_tenant).rejection_fallback == 65

    def test_reset(self, db_session, tenant, settings_service):
        settings_service.set(tenant, "approval.rules", {"rejectionFallback": 10})
        assert settings_service.reset(tenant, "approval.rules")["rejectionFallback"] == 65
        assert db_session.query(WorkflowSetting).count() == 0

"""
Workflow settings service
Per-tenant workflow settings with defaults, validation and cached reads
"""
from copy import deepcopy
from typing import Any, Dict, Optional
import logging

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from adops.config import settings as app_settings
from adops.models.schemas import SETTING_SCHEMAS, ApprovalRules, MilestoneThresholds, NotificationChannels
from adops.models.workflow import WorkflowSetting
from adops.tenancy import TenantContext
from workflow_core.cache import TenantCache
from workflow_core.engine.conditions import pydantic_field_errors
from workflow_core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _alias_keys(schema, value: Dict[str, Any]) -> Dict[str, Any]:
    """Rewrite field names to their stored (alias) spelling, recursively."""
    result: Dict[str, Any] = {}
    for key, item in value.items():
        field = schema.model_fields.get(key)
        if field is None:
            field = next((f for f in schema.model_fields.values() if f.alias == key), None)
        if field is None:
            result[key] = item
            continue
        annotation = field.annotation
        if isinstance(item, dict) and isinstance(annotation, type) and issubclass(annotation, BaseModel):
            item = _alias_keys(annotation, item)
        result[field.alias or key] = item
    return result


class WorkflowSettingsService:
    """
    Workflow settings service

    Reads merge the stored value over the defaults and are cached per tenant;
    writes validate, persist, commit and invalidate the tenant's cache.
    """

    def __init__(
        self,
        db: Session,
        cache: TenantCache,
        default_rejection_fallback: int = app_settings.DEFAULT_REJECTION_FALLBACK,
    ):
        self.db = db
        self.cache = cache
        self.defaults: Dict[str, Dict[str, Any]] = {
            key: schema().model_dump(by_alias=True) for key, schema in SETTING_SCHEMAS.items()
        }
        self.defaults["approval.rules"]["rejectionFallback"] = default_rejection_fallback

    def _schema(self, key: str):
        schema = SETTING_SCHEMAS.get(key)
        if schema is None:
            raise NotFoundError(f"Unknown workflow setting: {key}", details={"known": sorted(SETTING_SCHEMAS)})
        return schema

    def _row(self, tenant: TenantContext, key: str) -> Optional[WorkflowSetting]:
        return self.db.query(WorkflowSetting).filter(
            WorkflowSetting.organization_id == tenant.org_id,
            WorkflowSetting.key == key,
        ).first()

    def get_model(self, tenant: TenantContext, key: str) -> BaseModel:
        """Typed setting value (cached)"""
        schema = self._schema(key)

        def load():
            row = self._row(tenant, key)
            stored = row.value if row and isinstance(row.value, dict) else {}
            return schema.model_validate(_deep_merge(self.defaults[key], stored))

        return self.cache.get_or_load(tenant.org_id, ("settings", key), load)

    def get(self, tenant: TenantContext, key: str) -> Dict[str, Any]:
        return self.get_model(tenant, key).model_dump(by_alias=True)

    def get_all(self, tenant: TenantContext) -> Dict[str, Dict[str, Any]]:
        return {key: self.get(tenant, key) for key in SETTING_SCHEMAS}

    def set(self, tenant: TenantContext, key: str, value: Dict[str, Any], updated_by: Optional[int] = None) -> Dict[str, Any]:
        """
        Validate and store a setting (partial values are merged over the current value).

        Raises:
            NotFoundError: Unknown key
            ValidationError: Value does not match the key's schema
        """
        schema = self._schema(key)
        if not isinstance(value, dict):
            raise ValidationError(f"Setting {key} must be an object", field_errors={key: "expected an object"})

        current = self.get(tenant, key)
        try:
            model = schema.model_validate(_deep_merge(current, _alias_keys(schema, value)))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid value for {key}", field_errors=pydantic_field_errors(e, key)) from e

        stored = model.model_dump(by_alias=True)
        row = self._row(tenant, key)
        if row is None:
            row = WorkflowSetting(organization_id=tenant.org_id, key=key, value=stored, updated_by=updated_by)
            self.db.add(row)
        else:
            row.value = stored
            row.updated_by = updated_by
        self.db.commit()
        self.cache.invalidate(tenant.org_id)

        logger.info(f"[{tenant}] workflow setting {key} updated by {updated_by}")
        return stored

    def reset(self, tenant: TenantContext, key: str) -> Dict[str, Any]:
        """Drop the stored value so the default applies again"""
        self._schema(key)
        row = self._row(tenant, key)
        if row is not None:
            self.db.delete(row)
            self.db.commit()
        self.cache.invalidate(tenant.org_id)
        return self.get(tenant, key)

    # ============== Typed accessors ==============

    def approval_rules(self, tenant: TenantContext) -> ApprovalRules:
        return self.get_model(tenant, "approval.rules")

    def milestone_thresholds(self, tenant: TenantContext) -> MilestoneThresholds:
        return self.get_model(tenant, "milestone.thresholds")

    def notification_channels(self, tenant: TenantContext) -> NotificationChannels:
        return self.get_model(tenant, "notifications.enabled")

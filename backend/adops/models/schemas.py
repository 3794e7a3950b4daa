"""
Pydantic schemas
Request validation for rule configuration, event intake and pipeline writes
"""
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============== Events ==============

class WorkflowEventName(str, Enum):
    """Workflow events a trigger can listen to"""
    CAMPAIGN_CREATED = "campaign_created"
    SCHEDULE_CREATED = "schedule_created"
    SCHEDULE_VALIDATED = "schedule_validated"
    PROBABILITY_UPDATED = "probability_updated"
    INVENTORY_RESERVED = "inventory_reserved"
    CONTRACT_GENERATED = "contract_generated"
    IO_UPLOADED = "io_uploaded"
    INVOICE_GENERATED = "invoice_generated"
    RATE_DELTA_DETECTED = "rate_delta_detected"
    BUDGET_THRESHOLD_CROSSED = "budget_threshold_crossed"
    FIRST_SPOT_BOOKED = "first_spot_booked"


class EntityType(str, Enum):
    CAMPAIGN = "campaign"
    ORDER = "order"
    SCHEDULE = "schedule"
    RESERVATION = "reservation"
    CONTRACT = "contract"
    INVOICE = "invoice"


class TriggerContext(BaseModel):
    """Event intake for the trigger evaluator"""
    org_id: str = Field(..., min_length=1)
    user_id: Optional[int] = None
    user_role: Optional[str] = None
    event: WorkflowEventName
    entity_type: EntityType
    entity_id: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("entity_id", mode="before")
    @classmethod
    def coerce_entity_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


# ============== Actions ==============

class SendNotificationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to_users: List[int] = Field(default_factory=list)
    to_roles: List[str] = Field(default_factory=list)
    title: str = Field(..., min_length=1, max_length=200)
    message: str = ""

    @model_validator(mode="after")
    def require_recipients(self):
        if not self.to_users and not self.to_roles:
            raise ValueError("at least one of to_users / to_roles is required")
        return self


class CreateReservationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    expires_in_days: Optional[int] = Field(None, ge=1, le=90)


class RequireApprovalConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    roles: List[str] = Field(..., min_length=1)
    reason: Optional[str] = None


class ChangeProbabilityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    operation: Literal["set", "add", "subtract"]
    to: int


class TransitionStatusConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to: str = Field(..., min_length=1)


class EmitWebhookConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    secret: str = Field(..., min_length=1)
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    payload: Optional[Dict[str, Any]] = None
    timeout: Optional[float] = Field(None, gt=0, le=60)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, v):
        return v.upper() if isinstance(v, str) else v


class SendNotificationAction(BaseModel):
    type: Literal["send_notification"]
    config: SendNotificationConfig


class CreateReservationAction(BaseModel):
    type: Literal["create_reservation"]
    config: CreateReservationConfig = Field(default_factory=CreateReservationConfig)


class RequireApprovalAction(BaseModel):
    type: Literal["require_approval"]
    config: RequireApprovalConfig


class ChangeProbabilityAction(BaseModel):
    type: Literal["change_probability"]
    config: ChangeProbabilityConfig


class TransitionStatusAction(BaseModel):
    type: Literal["transition_status"]
    config: TransitionStatusConfig


class EmitWebhookAction(BaseModel):
    type: Literal["emit_webhook"]
    config: EmitWebhookConfig


ActionSpec = Annotated[
    Union[
        SendNotificationAction,
        CreateReservationAction,
        RequireApprovalAction,
        ChangeProbabilityAction,
        TransitionStatusAction,
        EmitWebhookAction,
    ],
    Field(discriminator="type"),
]


# ============== Triggers ==============

class TriggerCreate(BaseModel):
    """Condition is validated separately (workflow_core.engine.conditions.parse_condition)"""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    event: WorkflowEventName
    condition: Optional[Dict[str, Any]] = None
    actions: List[ActionSpec] = Field(..., min_length=1)
    is_enabled: bool = True
    priority: int = Field(default=100, ge=0, le=1000)


class TriggerUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    event: Optional[WorkflowEventName] = None
    condition: Optional[Dict[str, Any]] = None
    actions: Optional[List[ActionSpec]] = Field(None, min_length=1)
    is_enabled: Optional[bool] = None
    priority: Optional[int] = Field(None, ge=0, le=1000)
    change_reason: Optional[str] = None


# ============== Pipeline ==============

class ScheduledSpotCreate(BaseModel):
    show_id: int
    air_date: date
    placement_type: str = Field(..., min_length=1, max_length=30)
    spot_type: str = Field(default="produced", min_length=1, max_length=30)
    rate: Decimal = Field(default=Decimal("0"), ge=0)


class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    budget: Decimal = Field(default=Decimal("0"), ge=0)
    advertiser_id: Optional[int] = None
    agency_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    spots: List[ScheduledSpotCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_flight(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class OrderItemCreate(BaseModel):
    show_id: int
    air_date: date
    placement_type: str = Field(..., min_length=1, max_length=30)
    rate: Decimal = Field(default=Decimal("0"), ge=0)


class OrderCreate(BaseModel):
    campaign_id: Optional[int] = None
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None
    items: List[OrderItemCreate] = Field(default_factory=list)


class TransitionResult(BaseModel):
    """Outcome of a status transition"""
    entity_type: str
    entity_id: int
    previous_status: str
    new_status: str
    probability: Optional[int] = None


# ============== Tenant settings ==============

class _SettingsModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class MilestoneThresholds(_SettingsModel):
    schedule_valid: int = Field(35, ge=0, le=100)
    talent_approval_required: int = Field(65, ge=0, le=100)
    auto_reservation: int = Field(90, ge=0, le=100)


class CampaignApprovalRule(_SettingsModel):
    enabled: bool = True
    trigger_threshold: int = Field(90, ge=0, le=100, alias="triggerThreshold")
    required_roles: List[str] = Field(default_factory=lambda: ["admin", "master"], alias="requiredRoles")


class TalentApprovalRule(_SettingsModel):
    """Crossing milestone.thresholds.talent_approval_required opens one request per show"""
    enabled: bool = True
    required_for_types: List[str] = Field(
        default_factory=lambda: ["host_read", "endorsement"], alias="requiredForTypes"
    )
    fallback_approver: str = Field("producer", alias="fallbackApprover")


class ApprovalRules(_SettingsModel):
    campaign_approval: CampaignApprovalRule = Field(default_factory=CampaignApprovalRule, alias="campaignApproval")
    talent_approval: TalentApprovalRule = Field(default_factory=TalentApprovalRule, alias="talentApproval")
    rejection_fallback: int = Field(65, alias="rejectionFallback")

    @field_validator("rejection_fallback")
    @classmethod
    def validate_fallback(cls, v: int) -> int:
        if v not in (10, 35, 65):
            raise ValueError("rejection_fallback must be one of the rungs 10, 35, 65")
        return v


class NotificationChannels(_SettingsModel):
    email: bool = True
    in_app: bool = Field(True, alias="inApp")
    webhook: bool = True


class RateCardDeltaTracking(_SettingsModel):
    """Negotiated spot rates against the slot's rate card, checked once the schedule is validated"""
    enabled: bool = True
    threshold_percent: float = Field(10, ge=0, le=100, alias="thresholdPercent")
    require_approval_above: float = Field(20, ge=0, le=100, alias="requireApprovalAbove")


# Setting key -> schema
SETTING_SCHEMAS = {
    "milestone.thresholds": MilestoneThresholds,
    "approval.rules": ApprovalRules,
    "notifications.enabled": NotificationChannels,
    "rate_card.delta_tracking": RateCardDeltaTracking,
}

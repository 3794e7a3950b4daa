"""
Pytest configuration and shared fixtures
"""
import itertools
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from adops.database import Base
from adops.models import pipeline, workflow  # noqa: F401
from adops.models.pipeline import (
    Campaign, CampaignStatus, InventorySlot, ScheduledSpot, User,
)
from adops.services.actions import reset_action_registry
from adops.services.campaign_workflow_service import CampaignWorkflowService
from adops.services.order_workflow_service import OrderWorkflowService
from adops.services.workflow_settings_service import WorkflowSettingsService
from adops.tenancy import TenantContext
from adops.workflow import WorkflowRuntime
from workflow_core.cache import TenantCache

AIR_DATE = date.today() + timedelta(days=21)


@pytest.fixture(scope="function")
def db_engine():
    """In-memory database engine"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Database session"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clean_action_registry():
    reset_action_registry()
    yield
    reset_action_registry()


# ============== Tenancy ==============

@pytest.fixture
def tenant():
    return TenantContext(org_id="org_acme", org_slug="acme")


@pytest.fixture
def other_tenant():
    return TenantContext(org_id="org_globex", org_slug="globex")


@pytest.fixture
def cache():
    return TenantCache(ttl_seconds=60)


@pytest.fixture
def number_generator():
    """Deterministic document numbers: ORD-0001, CTR-0002, ..."""
    counter = itertools.count(1)
    return lambda prefix: f"{prefix}-{next(counter):04d}"


# ============== Services ==============

@pytest.fixture
def settings_service(db_session, cache):
    return WorkflowSettingsService(db_session, cache)


@pytest.fixture
def campaign_service(db_session, settings_service, number_generator):
    return CampaignWorkflowService(db_session, settings_service, number_generator=number_generator)


@pytest.fixture
def order_service(db_session, number_generator):
    return OrderWorkflowService(db_session, number_generator=number_generator)


@pytest.fixture
def runtime(session_factory, number_generator):
    """Runtime with inline event delivery"""
    runtime = WorkflowRuntime(
        session_factory=session_factory,
        asynchronous=False,
        number_generator=number_generator,
    )
    yield runtime
    runtime.stop()


# ============== Data ==============

@pytest.fixture
def users(db_session, tenant, other_tenant):
    """One user per role in the tenant, plus a foreign admin"""
    rows = {
        "master": User(organization_id=tenant.org_id, name="Morgan Master", role="master"),
        "admin": User(organization_id=tenant.org_id, name="Ada Admin", role="admin"),
        "sales": User(organization_id=tenant.org_id, name="Sam Sales", role="sales"),
        "producer": User(organization_id=tenant.org_id, name="Pat Producer", role="producer"),
        "inactive_admin": User(organization_id=tenant.org_id, name="Old Admin", role="admin", is_active=False),
        "foreign_admin": User(organization_id=other_tenant.org_id, name="Globex Admin", role="admin"),
    }
    db_session.add_all(rows.values())
    db_session.commit()
    return rows


@pytest.fixture
def slot(db_session, tenant):
    """Ten pre-roll units of show 7 on AIR_DATE"""
    row = InventorySlot(
        organization_id=tenant.org_id, show_id=7, air_date=AIR_DATE, placement_type="pre-roll",
        total=10, available=10, reserved=0, booked=0,
    )
    db_session.add(row)
    db_session.commit()
    return row


def make_campaign(db, tenant, status=CampaignStatus.DRAFT, probability=10, spots=0,
                  budget=Decimal("10000.00"), start_date=None, end_date=None, spot_type="produced"):
    """Insert a campaign directly at a status (test setup only)"""
    campaign = Campaign(
        organization_id=tenant.org_id,
        name="Spring Launch",
        status=status,
        probability=probability,
        budget=budget,
        start_date=start_date,
        end_date=end_date,
    )
    campaign.scheduled_spots = [
        ScheduledSpot(organization_id=tenant.org_id, show_id=7, air_date=AIR_DATE,
                      placement_type="pre-roll", spot_type=spot_type, rate=Decimal("250.00"))
        for _ in range(spots)
    ]
    db.add(campaign)
    db.commit()
    db.refresh(campaign)
    return campaign


@pytest.fixture
def campaign_factory(db_session, tenant):
    def factory(**kwargs):
        return make_campaign(db_session, kwargs.pop("tenant", tenant), **kwargs)
    return factory

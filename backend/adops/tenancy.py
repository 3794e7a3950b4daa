"""
Tenant context

Every service call carries the tenant explicitly; queries filter on
organization_id = tenant.org_id. There is no ambient "current tenant".
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TenantContext:
    """
    Attributes:
        org_id: Organization id stored on every tenant-owned row
        org_slug: Human readable organization slug (logging only)
    """

    org_id: str
    org_slug: Optional[str] = None

    def __post_init__(self):
        if not self.org_id:
            raise ValueError("TenantContext requires an org_id")

    def __str__(self) -> str:
        return self.org_slug or self.org_id


__all__ = ["TenantContext"]

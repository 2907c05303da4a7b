"""Tenant resolution.

authorization happens before the engine is ever called - by the time a
website id reaches us it's trusted. all we need from the outside world is
the tenant's domain, which a few queries use to recognize self-referrals.
"""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class Tenant:
    id: str
    domain: str | None = None


class TenantResolver(Protocol):
    def resolve(self, website_id: str) -> Tenant | None:
        """Look up a website, or None if it doesn't exist."""
        ...


class StaticTenantResolver:
    """Trusts every id; domains come from a fixed mapping (usually settings)."""

    def __init__(self, domains: dict[str, str] | None = None) -> None:
        self.domains = dict(domains or {})

    def resolve(self, website_id: str) -> Tenant | None:
        return Tenant(id=website_id, domain=self.domains.get(website_id))

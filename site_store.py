"""
Site record access for the domain provisioning core

The storage layer owns the `sites` table; this module only reads and writes
the fields the provisioning pipeline is responsible for.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import psycopg2

from database import execute_query, execute_update

logger = logging.getLogger(__name__)

PLAN_FREE = 'free'
PLAN_PREMIUM = 'premium'

class SiteStoreError(Exception):
    """Raised when a site record could not be persisted"""
    pass

@dataclass
class SiteRecord:
    """A business website and its domain lifecycle state"""
    slug: str
    business_name: str
    owner_phone: str
    city: Optional[str] = None
    plan: str = PLAN_FREE
    pending_domain: Optional[str] = None
    custom_domain: Optional[str] = None
    payment_id: Optional[str] = None
    language: Optional[str] = None

    @property
    def is_provisioning_unfinished(self) -> bool:
        return self.plan == PLAN_PREMIUM and bool(self.pending_domain) and not self.custom_domain

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'SiteRecord':
        return cls(
            slug=row['slug'],
            business_name=row.get('business_name') or '',
            owner_phone=row.get('owner_phone') or '',
            city=row.get('city'),
            plan=row.get('plan') or PLAN_FREE,
            pending_domain=row.get('pending_domain'),
            custom_domain=row.get('custom_domain'),
            payment_id=row.get('payment_id'),
            language=row.get('language'),
        )

class SiteStore(Protocol):
    """Read/write operations the provisioning core needs from storage"""

    async def get_site(self, slug: str) -> Optional[SiteRecord]:
        ...

    async def save_site(self, site: SiteRecord) -> None:
        ...

    async def list_unfinished_provisioning(self) -> List[SiteRecord]:
        ...

SITE_COLUMNS = "slug, business_name, owner_phone, city, plan, pending_domain, custom_domain, payment_id, language"

class PostgresSiteStore:
    """SiteStore backed by the shared PostgreSQL `sites` table"""

    async def _read(self, query: str, params: tuple) -> List[Dict[str, Any]]:
        """Reads raise SiteStoreError so an outage is never mistaken for a missing site"""
        try:
            return await execute_query(query, params, raise_on_error=True)
        except (psycopg2.Error, ValueError) as e:
            raise SiteStoreError(f"Could not read sites: {e}") from e

    async def get_site(self, slug: str) -> Optional[SiteRecord]:
        rows = await self._read(
            f"SELECT {SITE_COLUMNS} FROM sites WHERE slug = %s",
            (slug,)
        )
        return SiteRecord.from_row(rows[0]) if rows else None

    async def save_site(self, site: SiteRecord) -> None:
        updated = await execute_update(
            """
            UPDATE sites
            SET plan = %s, pending_domain = %s, custom_domain = %s, payment_id = %s,
                updated_at = CURRENT_TIMESTAMP
            WHERE slug = %s
            """,
            (site.plan, site.pending_domain, site.custom_domain, site.payment_id, site.slug)
        )
        if not updated:
            raise SiteStoreError(f"Site '{site.slug}' was not updated")
        logger.debug(f"💾 Saved site {site.slug}: plan={site.plan}, pending={site.pending_domain}, custom={site.custom_domain}")

    async def list_unfinished_provisioning(self) -> List[SiteRecord]:
        rows = await self._read(
            f"""
            SELECT {SITE_COLUMNS} FROM sites
            WHERE plan = %s
              AND pending_domain IS NOT NULL AND pending_domain <> ''
              AND (custom_domain IS NULL OR custom_domain = '')
            ORDER BY slug
            """,
            (PLAN_PREMIUM,)
        )
        return [SiteRecord.from_row(row) for row in rows]

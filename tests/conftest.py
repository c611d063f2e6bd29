"""
Shared test fixtures and configuration for the domain provisioning test suite
Provides in-memory fakes for storage, messaging and the external providers
"""

import os
import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
import factory
from factory.faker import Faker
from factory.declarations import Sequence

# Configure test logging
logging.basicConfig(level=logging.DEBUG)

# Test environment configuration
test_env_vars = {
    'TEST_MODE': '1',  # Never touch live registrar or DNS credentials
    'TEST_STRICT_DB': 'true',
    'ADMIN_ALERTS_ENABLED': 'true',
    'ALERT_MIN_SEVERITY': 'INFO',
    'RECOVERY_DELAY_SECONDS': '0',
    'CF_TUNNEL_ID': 'test-tunnel',
}
for key, value in test_env_vars.items():
    os.environ[key] = value

from site_store import PLAN_FREE, PLAN_PREMIUM, SiteRecord
from services.provisioning_orchestrator import ProvisioningOrchestrator

# ====================================================================
# FACTORIES
# ====================================================================

class SiteRecordFactory(factory.Factory):  # type: ignore[misc]
    """Factory for site records waiting on a custom domain"""
    class Meta:  # type: ignore[misc]
        model = SiteRecord

    slug = Sequence(lambda n: f"test-site-{n}")
    business_name = Faker('company')
    owner_phone = Sequence(lambda n: f"9198765{n:05d}")
    city = 'Delhi'
    plan = PLAN_FREE
    pending_domain = Sequence(lambda n: f"testsite{n}.in")
    custom_domain = None
    payment_id = None
    language = 'en'

# ====================================================================
# FAKES
# ====================================================================

class InMemorySiteStore:
    """SiteStore keeping copies of records so callers cannot mutate stored state"""

    def __init__(self, sites: Optional[List[SiteRecord]] = None):
        self.sites: Dict[str, SiteRecord] = {}
        self.save_count = 0
        for site in sites or []:
            self.sites[site.slug] = replace(site)

    async def get_site(self, slug: str) -> Optional[SiteRecord]:
        site = self.sites.get(slug)
        return replace(site) if site else None

    async def save_site(self, site: SiteRecord) -> None:
        self.save_count += 1
        self.sites[site.slug] = replace(site)

    async def list_unfinished_provisioning(self) -> List[SiteRecord]:
        return [replace(site) for site in self.sites.values() if site.is_provisioning_unfinished]

class FakeMessenger:
    """Records every outbound owner message"""

    def __init__(self):
        self.texts: List[tuple] = []
        self.calls_to_action: List[tuple] = []

    async def send(self, contact: str, text: str) -> bool:
        self.texts.append((contact, text))
        return True

    async def send_call_to_action(self, contact: str, body: str, url: str, button_label: str) -> bool:
        self.calls_to_action.append((contact, body, url, button_label))
        return True

class FakeDnsProvider:
    """Cloudflare stand-in that remembers zones and records like the real API"""

    def __init__(self):
        self.zones: Dict[str, Dict[str, Any]] = {}
        self.records: set = set()
        self.zone_creations = 0
        self.record_creations = 0

    async def add_zone(self, domain_name: str) -> Dict[str, Any]:
        if domain_name in self.zones:
            return {'success': True, 'existing': True, **self.zones[domain_name]}
        self.zone_creations += 1
        zone = {'zone_id': f"zone-{domain_name}", 'nameservers': ['ada.ns.cloudflare.com', 'bob.ns.cloudflare.com']}
        self.zones[domain_name] = zone
        return {'success': True, 'existing': False, **zone}

    async def add_dns_record(self, zone_id: str, domain_name: str) -> Dict[str, Any]:
        for name in (domain_name, f"www.{domain_name}"):
            if (zone_id, name) not in self.records:
                self.record_creations += 1
                self.records.add((zone_id, name))
        return {'success': True, 'records': [domain_name, f"www.{domain_name}"]}

class FakeRegistrar:
    """ResellerClub stand-in with customer lookup and 'already exists' semantics"""

    def __init__(self):
        self.customers: Dict[str, str] = {}
        self.contacts: List[str] = []
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.registration_calls = 0

    def registrant_email(self, phone: str) -> str:
        return f"{phone[-10:]}@whatswebsite.com"

    async def get_or_create_customer(self, email: str, name: str, phone: str, company: Optional[str] = None) -> Dict[str, Any]:
        if email in self.customers:
            return {'success': True, 'customer_id': self.customers[email], 'created': False}
        customer_id = str(1000 + len(self.customers))
        self.customers[email] = customer_id
        return {'success': True, 'customer_id': customer_id, 'created': True}

    async def get_or_create_contact(self, customer_id: str, name: str, email: str, phone: str, company: Optional[str] = None) -> Dict[str, Any]:
        contact_id = str(5000 + len(self.contacts))
        self.contacts.append(contact_id)
        return {'success': True, 'contact_id': contact_id}

    async def register_domain(self, domain_name: str, customer_id: str, contact_id: str, nameservers: List[str], years: int = 1) -> Dict[str, Any]:
        self.registration_calls += 1
        if domain_name in self.orders:
            return {'success': True, 'order_id': self.orders[domain_name]['order_id'], 'already_registered': True}
        order_id = str(90000 + len(self.orders))
        self.orders[domain_name] = {'order_id': order_id, 'customer_id': customer_id, 'nameservers': list(nameservers)}
        return {'success': True, 'order_id': order_id, 'already_registered': False}

class FakeTunnel:
    def __init__(self):
        self.hostnames: List[str] = []

    async def add_hostname(self, domain_name: str) -> Dict[str, Any]:
        if domain_name in self.hostnames:
            return {'success': True, 'changed': False, 'restarted': False}
        self.hostnames.append(domain_name)
        return {'success': True, 'changed': True, 'restarted': True}

class FakeMonitor:
    """Propagation monitor stand-in; optionally blocks until released"""

    def __init__(self, block: bool = False):
        self.calls: List[tuple] = []
        self.release = asyncio.Event()
        if not block:
            self.release.set()

    async def monitor(self, site: SiteRecord, domain_name: str) -> Dict[str, Any]:
        self.calls.append((site.slug, domain_name))
        await self.release.wait()
        return {'live': True, 'attempts': 1, 'elapsed_minutes': 2}

# ====================================================================
# FIXTURES
# ====================================================================

@pytest.fixture
def site_store():
    return InMemorySiteStore()

@pytest.fixture
def messenger():
    return FakeMessenger()

@pytest.fixture
def alerter():
    mock_alerter = AsyncMock()
    mock_alerter.send_alert = AsyncMock(return_value=True)
    return mock_alerter

@pytest.fixture
def dns_provider():
    return FakeDnsProvider()

@pytest.fixture
def registrar():
    return FakeRegistrar()

@pytest.fixture
def tunnel():
    return FakeTunnel()

@pytest.fixture
def monitor():
    return FakeMonitor()

@pytest.fixture
def orchestrator(site_store, messenger, alerter, dns_provider, registrar, tunnel, monitor):
    """Orchestrator wired entirely to in-memory fakes"""
    return ProvisioningOrchestrator(
        store=site_store,
        messenger=messenger,
        alerter=alerter,
        cloudflare=dns_provider,
        registrar=registrar,
        tunnel=tunnel,
        monitor=monitor,
        recovery_delay_seconds=0
    )

@pytest.fixture
def premium_site():
    return SiteRecordFactory(plan=PLAN_PREMIUM)

async def wait_for_monitors(orchestrator: ProvisioningOrchestrator):
    """Let launched propagation monitors run to completion"""
    await asyncio.gather(*list(orchestrator._monitor_tasks), return_exceptions=True)

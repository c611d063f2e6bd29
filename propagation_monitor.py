"""
DNS Propagation Monitoring
Polls a freshly provisioned domain on a back-off schedule and tells the owner when it is live
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
import dns.asyncresolver
import dns.exception

from admin_alerts import AlertCategory, AlertSeverity, get_admin_alert_system
from brand_config import build_share_link
from localization import t
from services.whatsapp import WhatsAppMessenger
from site_store import SiteRecord

logger = logging.getLogger(__name__)

# Minutes to wait before each poll; about 2h17m in total
PROPAGATION_SCHEDULE_MINUTES = (2, 5, 10, 20, 40, 60)
# Failed polls before this point get a "still propagating" note
PROGRESS_UPDATE_CUTOFF_MINUTES = 10

PUBLIC_RESOLVERS = ['1.1.1.1', '8.8.8.8']

class PropagationMonitor:
    """Watches one domain at a time until it serves HTTPS or the schedule runs out"""

    def __init__(
        self,
        messenger=None,
        alerter=None,
        schedule_minutes: Optional[Sequence[float]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        nameservers: Optional[List[str]] = None,
        http_timeout: float = 10.0
    ):
        self.messenger = messenger or WhatsAppMessenger()
        self.alerter = alerter or get_admin_alert_system()
        self.schedule_minutes = tuple(schedule_minutes if schedule_minutes is not None else PROPAGATION_SCHEDULE_MINUTES)
        self._sleep = sleep
        self.nameservers = nameservers or PUBLIC_RESOLVERS
        self.http_timeout = http_timeout

    async def resolve_domain(self, domain_name: str) -> List[str]:
        """Addresses the public resolvers return for the domain, empty if none yet"""
        resolver = dns.asyncresolver.Resolver(configure=False)
        resolver.nameservers = list(self.nameservers)
        resolver.lifetime = 5.0
        try:
            answer = await resolver.resolve(domain_name, 'A')
        except dns.exception.DNSException as e:
            logger.debug(f"🌐 PROPAGATION: {domain_name} not resolvable yet: {e.__class__.__name__}")
            return []
        return [record.to_text() for record in answer]

    async def check_https(self, domain_name: str) -> Optional[int]:
        """HTTP status for https://domain, None when the request fails"""
        try:
            async with httpx.AsyncClient(timeout=self.http_timeout, follow_redirects=True) as client:
                response = await client.get(f"https://{domain_name}/")
        except httpx.HTTPError as e:
            logger.debug(f"🌐 PROPAGATION: HTTPS check failed for {domain_name}: {e}")
            return None
        return response.status_code

    async def check_domain_live(self, domain_name: str) -> Dict[str, Any]:
        """A domain is live once it resolves and its site answers without a server error"""
        addresses = await self.resolve_domain(domain_name)
        if not addresses:
            return {'live': False, 'resolved': False, 'addresses': [], 'status_code': None}

        status_code = await self.check_https(domain_name)
        live = status_code is not None and status_code < 500
        return {'live': live, 'resolved': True, 'addresses': addresses, 'status_code': status_code}

    async def _notify(self, contact: str, text: str):
        try:
            await self.messenger.send(contact, text)
        except Exception as e:
            logger.error(f"❌ PROPAGATION: Failed to message {contact}: {e}")

    async def _announce_live(self, site: SiteRecord, domain_name: str, elapsed_minutes: float):
        share_link = build_share_link(domain_name, site.business_name, site.language)
        try:
            await self.messenger.send_call_to_action(
                site.owner_phone,
                t('propagation.live_body', site.language, domain=domain_name),
                share_link,
                t('propagation.share_button', site.language)
            )
        except Exception as e:
            logger.error(f"❌ PROPAGATION: Failed to send live message for {domain_name}: {e}")

        await self.alerter.send_alert(
            AlertSeverity.INFO,
            AlertCategory.DNS_PROPAGATION,
            "PropagationMonitor",
            f"{domain_name} is live",
            {'site': site.slug, 'elapsed_minutes': elapsed_minutes}
        )

    async def monitor(self, site: SiteRecord, domain_name: str) -> Dict[str, Any]:
        """
        Poll the domain on the configured schedule

        Sends at most one live message, a "still propagating" note for each
        early failed poll, and a single give-up message plus operator alert
        when the schedule is exhausted.

        Returns:
            {'live': bool, 'attempts': int, 'elapsed_minutes': float}
        """
        logger.info(f"🌐 PROPAGATION: Monitoring {domain_name} for site {site.slug}")
        elapsed_minutes = 0.0
        attempts = 0
        last_check: Dict[str, Any] = {}

        for wait_minutes in self.schedule_minutes:
            await self._sleep(wait_minutes * 60)
            elapsed_minutes += wait_minutes
            attempts += 1

            try:
                last_check = await self.check_domain_live(domain_name)
            except Exception as e:
                logger.warning(f"⚠️ PROPAGATION: Check #{attempts} for {domain_name} errored: {e}")
                last_check = {'live': False, 'error': str(e)}

            if last_check.get('live'):
                logger.info(f"✅ PROPAGATION: {domain_name} live after {elapsed_minutes:g} minutes")
                await self._announce_live(site, domain_name, elapsed_minutes)
                return {'live': True, 'attempts': attempts, 'elapsed_minutes': elapsed_minutes}

            logger.info(f"🔄 PROPAGATION: {domain_name} not live yet (check #{attempts}, {elapsed_minutes:g} min)")
            if elapsed_minutes < PROGRESS_UPDATE_CUTOFF_MINUTES:
                await self._notify(
                    site.owner_phone,
                    t('propagation.still_propagating', site.language, domain=domain_name, minutes=f"{elapsed_minutes:g}")
                )

        logger.warning(f"⚠️ PROPAGATION: Giving up on {domain_name} after {elapsed_minutes:g} minutes")
        await self._notify(site.owner_phone, t('propagation.gave_up', site.language, domain=domain_name))
        await self.alerter.send_alert(
            AlertSeverity.ERROR,
            AlertCategory.DNS_PROPAGATION,
            "PropagationMonitor",
            f"ACTION REQUIRED: {domain_name} still not live after {elapsed_minutes:g} minutes",
            {'site': site.slug, 'owner': site.owner_phone, 'attempts': attempts, 'last_check': last_check}
        )
        return {'live': False, 'attempts': attempts, 'elapsed_minutes': elapsed_minutes}

"""
Custom Domain Provisioning Orchestrator - single entry point for taking a site to its own domain

Runs the provisioning pipeline for one site:
zone → DNS records → registrant identity → registration → tunnel → persist → propagation monitor

Architecture:
- Linear step machine with a terminal FAILED state, no rollback
- Every external step is idempotent, so a crashed run is recovered by running it again
- In-memory guard so one site is never provisioned twice concurrently
- Propagation monitors run as supervised background tasks
- Startup scan re-triggers sites that paid but never finished
"""

import os
import asyncio
import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Dict, Optional, Set

from admin_alerts import AlertCategory, AlertSeverity, get_admin_alert_system
from brand_config import get_support_contact
from localization import t
from propagation_monitor import PropagationMonitor
from services.cloudflare import CloudflareService
from services.domain_suggestions import normalize_domain
from services.resellerclub import get_resellerclub_service
from services.tunnel import TunnelIngressService
from services.whatsapp import WhatsAppMessenger
from site_store import PLAN_PREMIUM, PostgresSiteStore, SiteRecord

logger = logging.getLogger(__name__)

# ====================================================================
# PIPELINE STATES AND ERRORS
# ====================================================================

class ProvisioningStep(Enum):
    START = "start"
    ZONE_READY = "zone_ready"
    DNS_RECORD_READY = "dns_record_ready"
    IDENTITY_RESOLVED = "identity_resolved"
    REGISTERED = "registered"
    TUNNEL_UPDATED = "tunnel_updated"
    PERSISTED = "persisted"
    MONITORING_LAUNCHED = "monitoring_launched"
    FAILED = "failed"

class ProvisioningError(Exception):
    """A step could not be completed; carries the step and the raw provider payload"""

    def __init__(self, step: ProvisioningStep, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.step = step
        self.message = message
        self.details = details or {}

# ====================================================================
# PROVISIONING ORCHESTRATOR
# ====================================================================

class ProvisioningOrchestrator:
    """
    Coordinates the external services that put a site on its custom domain.

    Collaborators are injected so the pipeline can run against fakes; any that
    are omitted fall back to the production services.
    """

    def __init__(
        self,
        store=None,
        messenger=None,
        alerter=None,
        cloudflare=None,
        registrar=None,
        tunnel=None,
        monitor=None,
        recovery_delay_seconds: Optional[float] = None
    ):
        self.store = store or PostgresSiteStore()
        self.messenger = messenger or WhatsAppMessenger()
        self.alerter = alerter or get_admin_alert_system()
        self.cloudflare = cloudflare or CloudflareService()
        self.registrar = registrar or get_resellerclub_service()
        self.tunnel = tunnel or TunnelIngressService()
        self.monitor = monitor or PropagationMonitor(messenger=self.messenger, alerter=self.alerter)
        if recovery_delay_seconds is None:
            recovery_delay_seconds = float(os.getenv('RECOVERY_DELAY_SECONDS', '15'))
        self.recovery_delay_seconds = recovery_delay_seconds

        self._in_flight: Set[str] = set()
        self._monitor_tasks: Set[asyncio.Task] = set()
        self._recovery_task: Optional[asyncio.Task] = None
        self._recovery_started = False

    # ----------------------------------------------------------------
    # Entry points
    # ----------------------------------------------------------------

    async def trigger_provisioning(self, slug: str, payment_reference: Optional[str] = None) -> Dict[str, Any]:
        """
        Provision the site's pending domain unless a run for this site is already in flight

        Returns:
            Dict with 'success', 'status' and, where known, 'domain' / 'step' / 'error'
        """
        if slug in self._in_flight:
            logger.warning(f"🚫 PROVISIONING: Run already in flight for {slug}, ignoring trigger")
            return {'success': False, 'status': 'already_running', 'slug': slug}

        self._in_flight.add(slug)
        try:
            try:
                site = await self.store.get_site(slug)
            except Exception as e:
                logger.error(f"❌ PROVISIONING: Could not load site {slug}: {e}")
                await self.alerter.send_alert(
                    AlertSeverity.ERROR,
                    AlertCategory.DATABASE,
                    "ProvisioningOrchestrator",
                    f"Could not load site {slug} for provisioning",
                    {'site': slug, 'payment_reference': payment_reference, 'error': str(e)}
                )
                return {'success': False, 'status': 'store_error', 'slug': slug, 'error': str(e)}

            if site is None:
                logger.error(f"❌ PROVISIONING: Site {slug} not found")
                return {'success': False, 'status': 'not_found', 'slug': slug}

            if not site.pending_domain:
                if site.custom_domain:
                    logger.info(f"✅ PROVISIONING: {slug} already on {site.custom_domain}")
                    return {'success': True, 'status': 'already_provisioned', 'domain': site.custom_domain}
                logger.warning(f"⚠️ PROVISIONING: {slug} has no pending domain")
                return {'success': False, 'status': 'no_pending_domain', 'slug': slug}

            if payment_reference:
                site.payment_id = payment_reference
            return await self.provision(site, site.pending_domain)
        finally:
            self._in_flight.discard(slug)

    async def provision(self, site: SiteRecord, requested_domain: str) -> Dict[str, Any]:
        """Run every pipeline step for one site; terminal errors alert operators and stop the run"""
        domain_name = normalize_domain(requested_domain) or requested_domain
        logger.info(f"🎯 PROVISIONING: Starting {domain_name} for site {site.slug}")
        target = ProvisioningStep.START

        try:
            if normalize_domain(requested_domain) is None:
                raise ProvisioningError(target, f"Invalid domain name '{requested_domain}'")
            await self._mark_premium(site, domain_name)

            target = ProvisioningStep.ZONE_READY
            await self._send_progress(site, 'provisioning.step_zone', domain_name)
            zone = await self._ensure_zone(domain_name)

            target = ProvisioningStep.DNS_RECORD_READY
            await self._send_progress(site, 'provisioning.step_dns', domain_name)
            await self._ensure_dns_records(zone['zone_id'], domain_name)

            target = ProvisioningStep.IDENTITY_RESOLVED
            await self._send_progress(site, 'provisioning.step_registration', domain_name)
            identity = await self._resolve_identity(site)

            target = ProvisioningStep.REGISTERED
            registration = await self._register(domain_name, identity, zone['nameservers'])

            target = ProvisioningStep.TUNNEL_UPDATED
            await self._send_progress(site, 'provisioning.step_tunnel', domain_name)
            await self._update_tunnel(site, domain_name)

            target = ProvisioningStep.PERSISTED
            await self._persist(site, domain_name)
            await self._send_progress(site, 'provisioning.step_saved', domain_name)

            target = ProvisioningStep.MONITORING_LAUNCHED
            self._launch_monitor(site, domain_name)

        except ProvisioningError as e:
            await self._handle_failure(site, domain_name, e)
            return {'success': False, 'status': ProvisioningStep.FAILED.value, 'step': e.step.value, 'error': e.message, 'domain': domain_name}
        except Exception as e:
            logger.exception(f"❌ PROVISIONING: Unexpected error for {site.slug} at {target.value}")
            error = ProvisioningError(target, f"Unexpected error: {e}", {'exception': repr(e)})
            await self._handle_failure(site, domain_name, error)
            return {'success': False, 'status': ProvisioningStep.FAILED.value, 'step': target.value, 'error': error.message, 'domain': domain_name}

        logger.info(f"✅ PROVISIONING: {domain_name} provisioned for {site.slug}")
        return {
            'success': True,
            'status': 'completed',
            'step': ProvisioningStep.MONITORING_LAUNCHED.value,
            'domain': domain_name,
            'zone_id': zone['zone_id'],
            'order_id': registration.get('order_id'),
            'already_registered': registration.get('already_registered', False)
        }

    # ----------------------------------------------------------------
    # Pipeline steps
    # ----------------------------------------------------------------

    async def _mark_premium(self, site: SiteRecord, domain_name: str):
        """Record the paid plan before any external side effects so a crash stays recoverable"""
        if site.plan == PLAN_PREMIUM and site.pending_domain == domain_name:
            return
        site.plan = PLAN_PREMIUM
        site.pending_domain = domain_name
        await self.store.save_site(site)

    async def _ensure_zone(self, domain_name: str) -> Dict[str, Any]:
        result = await self.cloudflare.add_zone(domain_name)
        if not result.get('success') or not result.get('zone_id'):
            raise ProvisioningError(
                ProvisioningStep.ZONE_READY,
                f"Could not create DNS zone for {domain_name}",
                {'response': result.get('errors', result)}
            )
        logger.info(f"✅ PROVISIONING: Zone ready for {domain_name}: {result['zone_id']} ({'existing' if result.get('existing') else 'new'})")
        return result

    async def _ensure_dns_records(self, zone_id: str, domain_name: str):
        result = await self.cloudflare.add_dns_record(zone_id, domain_name)
        if not result.get('success'):
            raise ProvisioningError(
                ProvisioningStep.DNS_RECORD_READY,
                f"Could not create tunnel DNS records for {domain_name}",
                {'zone_id': zone_id, 'record': result.get('record'), 'response': result.get('errors', result)}
            )

    async def _resolve_identity(self, site: SiteRecord) -> Dict[str, str]:
        email = self.registrar.registrant_email(site.owner_phone)
        name = site.business_name or site.slug

        customer = await self.registrar.get_or_create_customer(email, name, site.owner_phone, company=name)
        if not customer.get('success'):
            raise ProvisioningError(
                ProvisioningStep.IDENTITY_RESOLVED,
                f"Could not resolve registrar customer for {email}",
                {'response': customer.get('response', customer.get('error'))}
            )

        contact = await self.registrar.get_or_create_contact(customer['customer_id'], name, email, site.owner_phone, company=name)
        if not contact.get('success'):
            raise ProvisioningError(
                ProvisioningStep.IDENTITY_RESOLVED,
                f"Could not create registrar contact for customer {customer['customer_id']}",
                {'response': contact.get('response', contact.get('error'))}
            )

        return {'customer_id': customer['customer_id'], 'contact_id': contact['contact_id']}

    async def _register(self, domain_name: str, identity: Dict[str, str], nameservers) -> Dict[str, Any]:
        result = await self.registrar.register_domain(
            domain_name, identity['customer_id'], identity['contact_id'], list(nameservers or [])
        )
        if not result.get('success'):
            raise ProvisioningError(
                ProvisioningStep.REGISTERED,
                f"Registration failed for {domain_name}: {result.get('error')}",
                {'customer_id': identity['customer_id'], 'response': result.get('response', result.get('error'))}
            )
        return result

    async def _update_tunnel(self, site: SiteRecord, domain_name: str):
        """Best effort: the site record tracks DNS and registration only"""
        try:
            result = await self.tunnel.add_hostname(domain_name)
        except Exception as e:
            result = {'success': False, 'error': str(e)}

        if not result.get('success'):
            logger.error(f"❌ PROVISIONING: Tunnel update failed for {domain_name}: {result.get('error')}")
            await self.alerter.send_alert(
                AlertSeverity.WARNING,
                AlertCategory.TUNNEL,
                "ProvisioningOrchestrator",
                f"Tunnel ingress not updated for {domain_name}",
                {'site': site.slug, 'error': result.get('error')}
            )
        elif result.get('changed') and not result.get('restarted'):
            logger.warning(f"⚠️ PROVISIONING: Tunnel config updated for {domain_name} but daemon restart failed")

    async def _persist(self, site: SiteRecord, domain_name: str):
        site.custom_domain = domain_name
        site.pending_domain = None
        site.plan = PLAN_PREMIUM
        try:
            await self.store.save_site(site)
        except Exception as e:
            raise ProvisioningError(
                ProvisioningStep.PERSISTED,
                f"Could not save custom domain {domain_name} for {site.slug}",
                {'exception': repr(e)}
            )
        logger.info(f"💾 PROVISIONING: {site.slug} now on {domain_name}")

    # ----------------------------------------------------------------
    # Notifications
    # ----------------------------------------------------------------

    async def _send_progress(self, site: SiteRecord, key: str, domain_name: str, **kwargs):
        try:
            await self.messenger.send(site.owner_phone, t(key, site.language, domain=domain_name, **kwargs))
        except Exception as e:
            logger.error(f"❌ PROVISIONING: Failed to send '{key}' to {site.owner_phone}: {e}")

    async def _handle_failure(self, site: SiteRecord, domain_name: str, error: ProvisioningError):
        logger.error(f"❌ PROVISIONING: {site.slug} failed at {error.step.value}: {error.message}")
        await self.alerter.send_alert(
            AlertSeverity.CRITICAL,
            AlertCategory.DOMAIN_PROVISIONING,
            "ProvisioningOrchestrator",
            f"Provisioning failed at {error.step.value} for {domain_name}",
            {
                'site': site.slug,
                'owner': site.owner_phone,
                'domain': domain_name,
                'step': error.step.value,
                'error': error.message,
                **error.details
            }
        )
        await self._send_progress(site, 'provisioning.failed', domain_name, support=get_support_contact())

    # ----------------------------------------------------------------
    # Background work
    # ----------------------------------------------------------------

    def _launch_monitor(self, site: SiteRecord, domain_name: str) -> asyncio.Task:
        task = asyncio.create_task(
            self.monitor.monitor(replace(site), domain_name),
            name=f"propagation-{domain_name}"
        )
        self._monitor_tasks.add(task)
        task.add_done_callback(self._on_monitor_done)
        logger.info(f"📡 PROVISIONING: Propagation monitor launched for {domain_name}")
        return task

    def _on_monitor_done(self, task: asyncio.Task):
        self._monitor_tasks.discard(task)
        if task.cancelled():
            logger.info(f"🛑 Propagation monitor {task.get_name()} cancelled")
        elif task.exception() is not None:
            logger.error(f"❌ Propagation monitor {task.get_name()} crashed: {task.exception()!r}")
        else:
            logger.info(f"✅ Propagation monitor {task.get_name()} finished: {task.result()}")

    @property
    def active_monitors(self) -> int:
        return len(self._monitor_tasks)

    async def recover_unfinished_provisioning(self) -> Dict[str, Any]:
        """Re-trigger every paid site whose domain never got persisted; runs once per instance"""
        if self._recovery_started:
            logger.info("🔄 RECOVERY: Already ran for this process, skipping")
            return {'status': 'skipped', 'results': {}}
        self._recovery_started = True

        try:
            sites = await self.store.list_unfinished_provisioning()
        except Exception as e:
            logger.error(f"❌ RECOVERY: Could not list unfinished sites: {e}")
            await self.alerter.send_alert(
                AlertSeverity.ERROR,
                AlertCategory.DATABASE,
                "ProvisioningOrchestrator",
                "Startup recovery scan could not read site records",
                {'error': str(e)}
            )
            return {'status': 'error', 'error': str(e), 'results': {}}

        logger.info(f"🔄 RECOVERY: {len(sites)} site(s) with unfinished provisioning")
        results = {}
        for site in sites:
            result = await self.trigger_provisioning(site.slug)
            results[site.slug] = result.get('status')

        return {'status': 'completed', 'results': results}

    def schedule_startup_recovery(self) -> asyncio.Task:
        """Start the recovery scan after the configured delay without blocking startup"""
        if self._recovery_task is None:
            async def _delayed_recovery():
                await asyncio.sleep(self.recovery_delay_seconds)
                return await self.recover_unfinished_provisioning()

            self._recovery_task = asyncio.create_task(_delayed_recovery(), name="provisioning-recovery")
            logger.info(f"⏰ RECOVERY: Scheduled in {self.recovery_delay_seconds:g}s")
        return self._recovery_task

    async def shutdown(self):
        """Cancel background work on process exit"""
        pending = list(self._monitor_tasks)
        if self._recovery_task and not self._recovery_task.done():
            pending.append(self._recovery_task)
        if pending:
            logger.info(f"🛑 Shutting down with {len(pending)} background provisioning task(s) still running")
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

# ====================================================================
# GLOBAL ORCHESTRATOR INSTANCE
# ====================================================================

_provisioning_orchestrator = None

def get_provisioning_orchestrator() -> ProvisioningOrchestrator:
    """Get or create the global provisioning orchestrator"""
    global _provisioning_orchestrator
    if _provisioning_orchestrator is None:
        _provisioning_orchestrator = ProvisioningOrchestrator()
        logger.info("✅ Provisioning orchestrator instance created")
    return _provisioning_orchestrator

async def trigger_provisioning(slug: str, payment_reference: Optional[str] = None) -> Dict[str, Any]:
    """Called by the payment flow once a custom-domain plan is paid"""
    return await get_provisioning_orchestrator().trigger_provisioning(slug, payment_reference)

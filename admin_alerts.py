"""
Operator Alert Channel for the domain provisioning core

Out-of-band notifications to the platform operators, delivered over a
dedicated Telegram bot. Alerts are structured (severity, category, component,
message, details), deduplicated by fingerprint and rate limited so a flapping
external API cannot flood the operator chat.

Features:
- Severity levels (CRITICAL, ERROR, WARNING, INFO)
- Rate limiting to prevent alert spam
- Suppression of duplicate alerts within a window
- Multiple operator chats (TELEGRAM_ALERT_CHAT_ID + ADDITIONAL_ALERT_CHAT_IDS)
- HTML formatting for readability in Telegram
- In-memory history for diagnostics
"""

import os
import html
import json
import logging
import hashlib
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any, Union
from enum import Enum
from dataclasses import dataclass, asdict

from telegram import Bot
from telegram.constants import ParseMode

logger = logging.getLogger(__name__)

# ====================================================================
# ALERT SEVERITY LEVELS AND CATEGORIES
# ====================================================================

class AlertSeverity(Enum):
    """Alert severity levels"""
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"

SEVERITY_ORDER = [AlertSeverity.INFO, AlertSeverity.WARNING, AlertSeverity.ERROR, AlertSeverity.CRITICAL]

# Actionable alerts are never rate limited and do not use up the window
RATE_LIMIT_EXEMPT = {AlertSeverity.ERROR, AlertSeverity.CRITICAL}

class AlertCategory(Enum):
    """Alert categories for filtering and organization"""
    DOMAIN_PROVISIONING = "domain_provisioning"
    DNS_PROPAGATION = "dns_propagation"
    TUNNEL = "tunnel"
    EXTERNAL_API = "external_api"
    DATABASE = "database"
    SYSTEM_HEALTH = "system_health"

@dataclass
class Alert:
    """Structured alert data"""
    severity: AlertSeverity
    category: AlertCategory
    component: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None
    fingerprint: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow()
        if self.fingerprint is None:
            self.fingerprint = self._generate_fingerprint()

    def _generate_fingerprint(self) -> str:
        """Generate a fingerprint for alert deduplication"""
        content = f"{self.severity.value}:{self.category.value}:{self.component}:{self.message}"
        return hashlib.md5(content.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['severity'] = self.severity.value
        data['category'] = self.category.value
        data['timestamp'] = self.timestamp.isoformat() if self.timestamp else None
        return data

# ====================================================================
# ALERT CONFIGURATION
# ====================================================================

class AdminAlertConfig:
    """Configuration for the operator alert channel"""

    def __init__(self):
        # Rate limiting settings
        self.rate_limit_window = int(os.getenv('ALERT_RATE_LIMIT_WINDOW', '300'))  # 5 minutes
        self.max_alerts_per_window = int(os.getenv('ALERT_MAX_PER_WINDOW', '10'))

        # Alert suppression settings
        self.suppression_window = int(os.getenv('ALERT_SUPPRESSION_WINDOW', '3600'))  # 1 hour

        self.bot_token = os.getenv('TELEGRAM_ALERT_TOKEN', '')
        self.chat_ids = self._parse_chat_ids()

        # INFO is on by default so "domain is live" notices reach operators
        self.min_severity = AlertSeverity(os.getenv('ALERT_MIN_SEVERITY', 'INFO').upper())

        self.alerts_enabled = os.getenv('ADMIN_ALERTS_ENABLED', 'true').lower() == 'true'

        logger.info(f"✅ Operator Alert Config: enabled={self.alerts_enabled}, "
                   f"chats={len(self.chat_ids)}, min_severity={self.min_severity.value}")

    def _parse_chat_ids(self) -> List[str]:
        """Parse operator chat IDs from environment variables"""
        chat_ids = []

        primary_chat = os.getenv('TELEGRAM_ALERT_CHAT_ID', '').strip()
        if primary_chat:
            chat_ids.append(primary_chat)

        # Additional chats (comma-separated)
        for chat_id in os.getenv('ADDITIONAL_ALERT_CHAT_IDS', '').split(','):
            chat_id = chat_id.strip()
            if chat_id and chat_id not in chat_ids:
                chat_ids.append(chat_id)

        if not chat_ids:
            logger.warning("⚠️ No operator chat IDs configured - alerts will be logged only")

        return chat_ids

# ====================================================================
# ADMIN ALERT SYSTEM - MAIN CLASS
# ====================================================================

class AdminAlertSystem:
    """Operator alert system with rate limiting and deduplication"""

    MAX_HISTORY = 200

    def __init__(self, config: Optional[AdminAlertConfig] = None, bot: Optional[Bot] = None):
        self.config = config or AdminAlertConfig()
        self._alert_history: List[Dict[str, Any]] = []
        self._suppressed_alerts: Dict[str, datetime] = {}
        self._rate_limit_tracker: List[datetime] = []
        self._bot = bot
        self._bot_initialized = bot is not None

    def set_bot(self, bot: Bot):
        """Use an already configured bot (e.g. one owned by the host application)"""
        self._bot = bot
        self._bot_initialized = True
        logger.info("✅ Bot set for operator alerts")

    async def _get_bot(self) -> Optional[Bot]:
        if self._bot is None:
            if not self.config.bot_token:
                return None
            self._bot = Bot(token=self.config.bot_token)
        if not self._bot_initialized:
            await self._bot.initialize()
            self._bot_initialized = True
        return self._bot

    def _is_rate_limited(self) -> bool:
        """Check if we're currently rate limited"""
        now = datetime.utcnow()
        cutoff = now - timedelta(seconds=self.config.rate_limit_window)

        self._rate_limit_tracker = [ts for ts in self._rate_limit_tracker if ts > cutoff]

        return len(self._rate_limit_tracker) >= self.config.max_alerts_per_window

    def _is_suppressed(self, fingerprint: str) -> bool:
        """Check if an alert is currently suppressed"""
        if fingerprint not in self._suppressed_alerts:
            return False

        suppressed_until = self._suppressed_alerts[fingerprint]
        if datetime.utcnow() > suppressed_until:
            del self._suppressed_alerts[fingerprint]
            return False

        return True

    def _suppress_alert(self, fingerprint: str):
        suppression_time = datetime.utcnow() + timedelta(seconds=self.config.suppression_window)
        self._suppressed_alerts[fingerprint] = suppression_time

    def _record(self, alert: Alert, sent: bool):
        entry = alert.to_dict()
        entry['sent'] = sent
        self._alert_history.append(entry)
        if len(self._alert_history) > self.MAX_HISTORY:
            self._alert_history = self._alert_history[-self.MAX_HISTORY:]

    def _format_alert_message(self, alert: Alert) -> str:
        """Format alert for Telegram message"""
        severity_icons = {
            AlertSeverity.CRITICAL: "🔴",
            AlertSeverity.ERROR: "🟠",
            AlertSeverity.WARNING: "🟡",
            AlertSeverity.INFO: "🔵"
        }

        category_icons = {
            AlertCategory.DOMAIN_PROVISIONING: "🌐",
            AlertCategory.DNS_PROPAGATION: "📡",
            AlertCategory.TUNNEL: "🚇",
            AlertCategory.EXTERNAL_API: "🔗",
            AlertCategory.DATABASE: "🗄️",
            AlertCategory.SYSTEM_HEALTH: "🏥"
        }

        icon = severity_icons.get(alert.severity, "⚠️")
        cat_icon = category_icons.get(alert.category, "📋")

        timestamp_str = alert.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC") if alert.timestamp else "Unknown"

        message_parts = [
            f"{icon} <b>OPERATOR ALERT - {alert.severity.value}</b>",
            f"{cat_icon} <b>Category:</b> {alert.category.value.replace('_', ' ').title()}",
            f"🔧 <b>Component:</b> {html.escape(alert.component)}",
            f"📝 <b>Message:</b> {html.escape(alert.message)}",
            f"🕐 <b>Time:</b> {timestamp_str}",
        ]

        if alert.details:
            message_parts.append("📊 <b>Details:</b>")
            for key, value in alert.details.items():
                if isinstance(value, dict):
                    value = json.dumps(value, indent=2, default=str)
                elif isinstance(value, (list, tuple)):
                    value = ", ".join(str(v) for v in value)
                message_parts.append(f"   • <b>{html.escape(str(key))}:</b> {html.escape(str(value))}")

        return "\n".join(message_parts)

    async def _send_alert_to_chat(self, bot: Bot, chat_id: str, alert: Alert) -> bool:
        """Send alert to a single operator chat"""
        try:
            await bot.send_message(
                chat_id=chat_id,
                text=self._format_alert_message(alert),
                parse_mode=ParseMode.HTML
            )
            logger.info(f"✅ Operator alert sent to {chat_id}: {alert.severity.value} - {alert.component}")
            return True
        except Exception as e:
            logger.error(f"❌ Failed to send operator alert to {chat_id}: {e}")
            return False

    async def send_alert(
        self,
        severity: Union[AlertSeverity, str],
        category: Union[AlertCategory, str],
        component: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Send an operator alert with rate limiting and deduplication

        Args:
            severity: Alert severity level
            category: Alert category
            component: Component that generated the alert
            message: Human-readable alert message
            details: Additional structured data (raw provider payloads etc.)

        Returns:
            bool: True if alert was delivered to at least one chat
        """
        try:
            if not self.config.alerts_enabled:
                logger.debug(f"Operator alerts disabled - skipping: {component}: {message}")
                return False

            if isinstance(severity, str):
                severity = AlertSeverity(severity.upper())
            if isinstance(category, str):
                category = AlertCategory(category.lower())

            if SEVERITY_ORDER.index(severity) < SEVERITY_ORDER.index(self.config.min_severity):
                logger.debug(f"Alert below minimum severity ({self.config.min_severity.value}) - skipping: {message}")
                return False

            alert = Alert(
                severity=severity,
                category=category,
                component=component,
                message=message,
                details=details
            )

            if alert.fingerprint and self._is_suppressed(alert.fingerprint):
                logger.debug(f"Alert suppressed (duplicate): {component}: {message}")
                self._record(alert, sent=False)
                return False

            rate_limited = severity not in RATE_LIMIT_EXEMPT
            if rate_limited and self._is_rate_limited():
                logger.warning(f"⚠️ Operator alerts rate limited - dropping: {component}: {message}")
                self._record(alert, sent=False)
                return False

            # Always leave a trace in application logs
            log_level = getattr(logging, severity.value, logging.WARNING)
            logger.log(log_level, f"🚨 OPERATOR ALERT ({severity.value}): [{component}] {message}")

            bot = await self._get_bot()
            if bot is None or not self.config.chat_ids:
                logger.warning("⚠️ Operator alert bot not configured - alert logged only")
                self._record(alert, sent=False)
                return False

            sent_count = 0
            for chat_id in self.config.chat_ids:
                if await self._send_alert_to_chat(bot, chat_id, alert):
                    sent_count += 1

            self._record(alert, sent=sent_count > 0)
            if sent_count > 0:
                if rate_limited:
                    self._rate_limit_tracker.append(datetime.utcnow())
                if alert.fingerprint:
                    self._suppress_alert(alert.fingerprint)
                return True

            logger.error(f"❌ Failed to send operator alert to any chat: {component}: {message}")
            return False

        except Exception as e:
            logger.error(f"❌ Operator alert system error: {e}")
            logger.error(f"🚨 ALERT (failed to send): [{component}] {message}")
            return False

# ====================================================================
# GLOBAL ADMIN ALERT INSTANCE
# ====================================================================

_admin_alert_system = None

def get_admin_alert_system() -> AdminAlertSystem:
    """Get or create the global operator alert system instance"""
    global _admin_alert_system
    if _admin_alert_system is None:
        _admin_alert_system = AdminAlertSystem()
        logger.info("✅ Operator alert system initialized")
    return _admin_alert_system


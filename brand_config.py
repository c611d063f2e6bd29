"""
Brand configuration for the website platform
Platform name, support contact and share-link helpers used in owner messages
"""

import os
import logging
from typing import Optional
from urllib.parse import quote

from localization import t

logger = logging.getLogger(__name__)

class BrandConfig:
    """Configuration class for platform branding settings"""

    _instance = None
    _initialized = False

    def __new__(cls):
        """Singleton pattern to ensure consistent configuration"""
        if cls._instance is None:
            cls._instance = super(BrandConfig, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if BrandConfig._initialized:
            return

        self.platform_name = self._sanitize_config_value(os.getenv('PLATFORM_NAME') or 'SheruSites', 'SheruSites')
        self.support_contact = self._sanitize_config_value(os.getenv('SUPPORT_CONTACT') or '+91 90000 00000', '+91 90000 00000')
        self.share_base_url = os.getenv('WHATSAPP_SHARE_BASE_URL', 'https://wa.me/')

        BrandConfig._initialized = True
        logger.debug(f"🔧 Brand configuration initialized: platform='{self.platform_name}'")

    def _sanitize_config_value(self, value: str, fallback: str) -> str:
        """
        Sanitize configuration values picked up from the environment

        Args:
            value: Raw configuration value from environment
            fallback: Safe fallback value

        Returns:
            Sanitized configuration value
        """
        if not value or not isinstance(value, str):
            return fallback

        value = value.strip()
        if value.startswith('<?xml') or '<Error>' in value or len(value) > 50:
            logger.warning(f"⚠️ Suspicious configuration value detected, using fallback: '{fallback}'")
            return fallback

        return value

def get_platform_name() -> str:
    return BrandConfig().platform_name

def get_support_contact() -> str:
    return BrandConfig().support_contact

def build_share_link(domain: str, business_name: str, lang_code: Optional[str] = None) -> str:
    """WhatsApp click-to-share link announcing the owner's new domain"""
    text = t(
        'propagation.share_text',
        lang_code,
        business_name=business_name or domain,
        domain=domain,
        platform=get_platform_name()
    )
    return f"{BrandConfig().share_base_url}?text={quote(text)}"

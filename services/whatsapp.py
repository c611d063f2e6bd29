"""
WhatsApp Cloud API messaging
Sends owner-facing provisioning updates as text and call-to-action messages
"""

import os
import logging
import httpx
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

GRAPH_API = "https://graph.facebook.com/v21.0"

# WhatsApp limits CTA button labels to 20 characters
MAX_BUTTON_LABEL = 20

class Messenger(Protocol):
    """Outbound channel to a site owner"""

    async def send(self, contact: str, text: str) -> bool:
        ...

    async def send_call_to_action(self, contact: str, body: str, url: str, button_label: str) -> bool:
        ...

class WhatsAppMessenger:
    """Messenger implementation over the Meta Graph API"""
    _client: Optional[httpx.AsyncClient] = None

    def __init__(self):
        self.access_token = os.getenv('META_ACCESS_TOKEN', '')
        self.phone_number_id = os.getenv('META_PHONE_NUMBER_ID', '')
        self.headers = {
            'Authorization': f'Bearer {self.access_token}',
            'Content-Type': 'application/json'
        }

    @classmethod
    async def get_client(cls) -> httpx.AsyncClient:
        if cls._client is None or cls._client.is_closed:
            timeout = httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0)
            cls._client = httpx.AsyncClient(timeout=timeout)
        return cls._client

    @classmethod
    async def close_client(cls):
        if cls._client and not cls._client.is_closed:
            await cls._client.aclose()
            cls._client = None

    def _is_configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    async def _post_message(self, contact: str, payload: Dict[str, Any], preview: str) -> bool:
        if not self._is_configured():
            logger.info(f"📱 WhatsApp not configured - would send to {contact}: {preview[:100]}")
            return False

        message = {'messaging_product': 'whatsapp', 'to': contact, **payload}
        try:
            client = await self.get_client()
            response = await client.post(
                f"{GRAPH_API}/{self.phone_number_id}/messages",
                headers=self.headers,
                json=message
            )
        except httpx.HTTPError as e:
            logger.error(f"❌ WhatsApp send error to {contact}: {e}")
            return False

        if response.is_success:
            logger.info(f"✅ WhatsApp message sent to {contact}")
            return True

        logger.error(f"❌ WhatsApp send failed to {contact}: HTTP {response.status_code} {response.text[:300]}")
        return False

    async def send(self, contact: str, text: str) -> bool:
        """Send a plain text message"""
        return await self._post_message(contact, {'type': 'text', 'text': {'body': text}}, text)

    async def send_call_to_action(self, contact: str, body: str, url: str, button_label: str) -> bool:
        """Send an interactive message with a single URL button"""
        payload = {
            'type': 'interactive',
            'interactive': {
                'type': 'cta_url',
                'body': {'text': body},
                'action': {
                    'name': 'cta_url',
                    'parameters': {
                        'display_text': button_label[:MAX_BUTTON_LABEL],
                        'url': url
                    }
                }
            }
        }
        return await self._post_message(contact, payload, body)

"""
Cloudflare DNS API integration
Handles zone creation and the tunnel CNAME records for customer domains
"""

import os
import logging
import httpx  # HTTP client for Cloudflare API
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Cloudflare error codes that mean the resource is already in place
ZONE_ALREADY_EXISTS_CODES = {1061}
RECORD_ALREADY_EXISTS_CODES = {81053, 81057}

class CloudflareService:
    """Cloudflare API service for zone and tunnel record management"""
    _client: Optional[httpx.AsyncClient] = None

    def __init__(self):
        self.api_token = os.getenv('CLOUDFLARE_API_TOKEN', '')
        self.account_id = os.getenv('CLOUDFLARE_ACCOUNT_ID', '')
        self.tunnel_id = os.getenv('CF_TUNNEL_ID', '')
        self.base_url = os.getenv('CLOUDFLARE_API_URL', 'https://api.cloudflare.com/client/v4')

        if os.getenv('TEST_MODE') == '1':
            self.api_token = self.api_token or 'test-cloudflare-token'
            self.account_id = self.account_id or 'test-account'
            self.tunnel_id = self.tunnel_id or 'test-tunnel'

        self.headers = {
            'Authorization': f'Bearer {self.api_token.strip()}',
            'Content-Type': 'application/json',
            'Accept': 'application/json'
        }

    @classmethod
    async def get_client(cls) -> httpx.AsyncClient:
        """Get or create persistent HTTP client with connection pooling"""
        if cls._client is None or cls._client.is_closed:
            limits = httpx.Limits(
                max_keepalive_connections=10,
                max_connections=20,
                keepalive_expiry=30
            )
            timeout = httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0)
            cls._client = httpx.AsyncClient(limits=limits, timeout=timeout)
        return cls._client

    @classmethod
    async def close_client(cls):
        """Close HTTP client for clean shutdown"""
        if cls._client and not cls._client.is_closed:
            await cls._client.aclose()
            cls._client = None

    @property
    def tunnel_target(self) -> str:
        return f"{self.tunnel_id}.cfargotunnel.com"

    def _is_configured(self) -> bool:
        return bool(self.api_token)

    @staticmethod
    def _parse_errors(response: httpx.Response) -> List[Dict[str, Any]]:
        try:
            data = response.json()
            errors = data.get('errors') or []
        except ValueError:
            logger.error(f"Failed to parse Cloudflare response: {response.text[:500]}")
            errors = []
        return errors or [{'message': f'HTTP {response.status_code} error'}]

    @staticmethod
    def _has_error_code(errors: List[Dict[str, Any]], codes: set) -> bool:
        return any(error.get('code') in codes for error in errors)

    async def add_zone(self, domain_name: str) -> Dict[str, Any]:
        """
        Create a DNS zone for the domain, reusing it if Cloudflare already has one

        Returns:
            {'success': True, 'zone_id', 'nameservers', 'existing'} or
            {'success': False, 'errors': [...]}
        """
        if not self._is_configured():
            logger.warning("⚠️ Cloudflare credentials not configured")
            return {'success': False, 'errors': [{'message': 'Cloudflare credentials not configured'}]}

        logger.info(f"🌐 Creating Cloudflare zone for: {domain_name}")

        payload: Dict[str, Any] = {'name': domain_name, 'type': 'full'}
        if self.account_id:
            payload['account'] = {'id': self.account_id}

        try:
            client = await self.get_client()
            response = await client.post(f"{self.base_url}/zones", headers=self.headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"❌ Error creating zone for {domain_name}: {e}")
            return {'success': False, 'errors': [{'message': str(e)}]}

        if response.status_code == 200:
            data = response.json()
            if data.get('success'):
                result = data.get('result', {})
                logger.info(f"✅ Zone created for {domain_name}: {result.get('id')}")
                return {
                    'success': True,
                    'zone_id': result.get('id'),
                    'nameservers': result.get('name_servers', []),
                    'existing': False
                }

        errors = self._parse_errors(response)
        if self._has_error_code(errors, ZONE_ALREADY_EXISTS_CODES):
            logger.info(f"🔄 Zone already exists for {domain_name}, looking it up")
            existing_zone = await self.get_zone_by_name(domain_name)
            if existing_zone:
                return {
                    'success': True,
                    'zone_id': existing_zone.get('id'),
                    'nameservers': existing_zone.get('name_servers', []),
                    'existing': True
                }
            logger.error(f"❌ Zone for {domain_name} reported as existing but lookup failed")
            return {'success': False, 'errors': errors + [{'message': 'existing zone lookup failed'}]}

        logger.error(f"❌ Zone creation failed for {domain_name}: {errors}")
        return {'success': False, 'errors': errors}

    async def get_zone_by_name(self, domain_name: str) -> Optional[Dict]:
        """Get zone by domain name"""
        try:
            client = await self.get_client()
            response = await client.get(
                f"{self.base_url}/zones",
                headers=self.headers,
                params={'name': domain_name}
            )

            if response.status_code == 200:
                data = response.json()
                zones = data.get('result') or []
                if data.get('success') and zones:
                    return zones[0]

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Error getting zone by name: {e}")

        return None

    async def create_dns_record(self, zone_id: str, record_type: str, name: str, content: str, ttl: int = 1, proxied: bool = False) -> Dict:
        """Create a DNS record; an identical existing record counts as success"""
        record_data = {
            'type': record_type.upper(),
            'name': name,
            'content': content,
            'ttl': ttl,
            'proxied': proxied
        }

        try:
            client = await self.get_client()
            response = await client.post(
                f"{self.base_url}/zones/{zone_id}/dns_records",
                headers=self.headers,
                json=record_data
            )
        except httpx.HTTPError as e:
            logger.error(f"❌ Error creating DNS record {record_type} {name}: {e}")
            return {'success': False, 'errors': [{'message': str(e)}]}

        if response.status_code == 200:
            data = response.json()
            if data.get('success'):
                logger.info(f"✅ DNS record created: {record_type} {name}")
                return {'success': True, 'result': data.get('result', {}), 'existing': False}

        errors = self._parse_errors(response)
        if self._has_error_code(errors, RECORD_ALREADY_EXISTS_CODES):
            logger.info(f"✅ DNS record already exists: {record_type} {name}")
            return {'success': True, 'result': {}, 'existing': True}

        logger.error(f"❌ DNS record creation failed for {name}: {errors}")
        return {'success': False, 'errors': errors}

    async def add_dns_record(self, zone_id: str, domain_name: str) -> Dict[str, Any]:
        """
        Point the apex and www of a domain at the shared tunnel with proxied CNAMEs

        Returns:
            {'success': True, 'records': [...]} or the first failing record's result
        """
        if not self._is_configured():
            return {'success': False, 'errors': [{'message': 'Cloudflare credentials not configured'}]}

        records = []
        for name in (domain_name, f"www.{domain_name}"):
            result = await self.create_dns_record(zone_id, 'CNAME', name, self.tunnel_target, proxied=True)
            if not result.get('success'):
                result['record'] = name
                return result
            records.append(name)

        return {'success': True, 'records': records}

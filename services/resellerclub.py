"""
ResellerClub domain registration API integration
Handles availability checks, customer/contact identities, registration and nameservers

All endpoints authenticate with the `auth-userid` + `api-key` query pair and take
form-encoded bodies. Responses are JSON: either a bare integer (new ids), an
object keyed by result, or {"status": "ERROR", "message": "..."}.
"""

import os
import asyncio
import logging
import secrets
import httpx
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

LIVE_API_URL = "https://httpapi.com/api"
SANDBOX_API_URL = "https://test.httpapi.com/api"

# Registrar messages meaning the domain is already held; success only when the order is in our account
ALREADY_REGISTERED_MARKERS = ('already exists', 'already registered', 'exists in our database')

class ResellerClubService:
    """ResellerClub HTTP API client with connection pooling"""

    _instance = None

    def __new__(cls):
        """Singleton pattern for shared connections"""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._client: Optional[httpx.AsyncClient] = None

        # TEST_MODE never talks to the live registrar
        if os.getenv('TEST_MODE') == '1':
            logger.info("🔒 TEST_MODE active - using mock ResellerClub configuration")
            self.reseller_id = 'test_reseller'
            self.api_key = 'test_api_key'
            self.base_url = SANDBOX_API_URL
        else:
            self.reseller_id = os.getenv('RESELLERCLUB_ID', '')
            self.api_key = os.getenv('RESELLERCLUB_API_KEY', '')
            sandbox = os.getenv('RESELLERCLUB_SANDBOX', 'false').lower() == 'true'
            self.base_url = SANDBOX_API_URL if sandbox else LIVE_API_URL

        self.email_domain = os.getenv('REGISTRAR_EMAIL_DOMAIN', 'whatswebsite.com')
        self.address = {
            'address-line-1': os.getenv('REGISTRAR_ADDRESS_LINE', 'India'),
            'city': os.getenv('REGISTRAR_CITY', 'Delhi'),
            'state': os.getenv('REGISTRAR_STATE', 'Delhi'),
            'country': os.getenv('REGISTRAR_COUNTRY', 'IN'),
            'zipcode': os.getenv('REGISTRAR_ZIPCODE', '110001'),
        }
        self._initialized = True

    def _init_client(self):
        """Initialize HTTP client with connection pooling"""
        if self._client is None or self._client.is_closed:
            limits = httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
                keepalive_expiry=30.0
            )
            timeout = httpx.Timeout(connect=5.0, read=30.0, write=10.0, pool=5.0)
            self._client = httpx.AsyncClient(limits=limits, timeout=timeout, follow_redirects=True)

    async def close_client(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _is_configured(self) -> bool:
        return bool(self.reseller_id and self.api_key)

    def _auth_params(self) -> Dict[str, str]:
        return {'auth-userid': self.reseller_id, 'api-key': self.api_key}

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        retry: bool = False
    ) -> Tuple[int, Any]:
        """
        Call an API endpoint and return (status_code, decoded body)

        Only idempotent lookups are retried; writes go out exactly once.
        """
        self._init_client()
        query = {**self._auth_params(), **(params or {})}
        kwargs: Dict[str, Any] = {'params': query}
        if data is not None:
            kwargs['data'] = data
        if timeout is not None:
            kwargs['timeout'] = timeout

        max_retries = 3 if retry else 1
        base_delay = 1.0
        for attempt in range(max_retries):
            try:
                response = await self._client.request(method, f"{self.base_url}/{endpoint}", **kwargs)
                break
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
                if attempt + 1 >= max_retries:
                    raise
                delay = base_delay * (2 ** attempt)
                logger.warning(f"⚠️ ResellerClub timeout on {endpoint} (attempt {attempt + 1}/{max_retries}), retrying in {delay}s: {e}")
                await asyncio.sleep(delay)

        try:
            body = response.json()
        except ValueError:
            body = response.text.strip()
        return response.status_code, body

    @staticmethod
    def _error_message(body: Any) -> str:
        if isinstance(body, dict):
            for key in ('message', 'error', 'actionstatusdesc'):
                if body.get(key):
                    return str(body[key])
        return str(body)

    @staticmethod
    def _is_error(status_code: int, body: Any) -> bool:
        if status_code >= 400:
            return True
        return isinstance(body, dict) and str(body.get('status', '')).upper() == 'ERROR'

    @staticmethod
    def _as_int(body: Any) -> Optional[int]:
        try:
            return int(str(body).strip())
        except (TypeError, ValueError):
            return None

    @staticmethod
    def split_phone(phone: str) -> Tuple[str, str]:
        """Split an Indian mobile number into (country code, subscriber number)"""
        digits = ''.join(char for char in phone if char.isdigit())
        if digits.startswith('91') and len(digits) > 10:
            digits = digits[2:]
        return '91', digits

    def registrant_email(self, phone: str) -> str:
        """Registrar login for a site owner, derived from their phone number"""
        _, subscriber = self.split_phone(phone)
        return f"{subscriber}@{self.email_domain}"

    @staticmethod
    def _generate_password() -> str:
        # Registrar requires upper, lower, digit and special characters
        return f"Ws@{secrets.randbelow(10)}{secrets.token_hex(5)}"

    # ====================================================================
    # AVAILABILITY
    # ====================================================================

    async def check_domain_availability(self, domain_name: str, timeout: float = 5.0) -> Dict[str, Any]:
        """
        Check whether a domain can be registered

        A failed or timed-out check is reported as unavailable.
        """
        name, _, tld = domain_name.partition('.')
        try:
            status_code, body = await self._request(
                'GET', 'domains/available.json',
                params={'domain-name': name, 'tlds': tld},
                timeout=timeout
            )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Availability check failed for {domain_name}: {e}")
            return {'domain': domain_name, 'available': False, 'error': str(e)}

        if self._is_error(status_code, body) or not isinstance(body, dict):
            logger.warning(f"⚠️ Availability check error for {domain_name}: {self._error_message(body)}")
            return {'domain': domain_name, 'available': False, 'error': self._error_message(body)}

        status = (body.get(domain_name) or {}).get('status', 'unknown')
        return {'domain': domain_name, 'available': status == 'available', 'status': status}

    # ====================================================================
    # REGISTRANT IDENTITY
    # ====================================================================

    async def get_or_create_customer(self, email: str, name: str, phone: str, company: Optional[str] = None) -> Dict[str, Any]:
        """
        Find the registrar customer for this email or sign one up

        Returns:
            {'success': True, 'customer_id': str, 'created': bool} or
            {'success': False, 'error': str, 'response': raw body}
        """
        if not self._is_configured():
            return {'success': False, 'error': 'ResellerClub credentials not configured'}

        try:
            status_code, body = await self._request(
                'GET', 'customers/search.json',
                params={'username': email, 'no-of-records': 1, 'page-no': 1},
                retry=True
            )
            if not self._is_error(status_code, body) and isinstance(body, dict):
                for key, record in body.items():
                    if key in ('recsonpage', 'recsindb') or not isinstance(record, dict):
                        continue
                    customer_id = record.get('customer.customerid')
                    if customer_id:
                        logger.info(f"✅ Found existing registrar customer {customer_id} for {email}")
                        return {'success': True, 'customer_id': str(customer_id), 'created': False}

            country_code, subscriber = self.split_phone(phone)
            signup_data = {
                'username': email,
                'passwd': self._generate_password(),
                'name': name,
                'company': company or name,
                **self.address,
                'phone-cc': country_code,
                'phone': subscriber,
                'lang-pref': 'en',
            }
            status_code, body = await self._request('POST', 'customers/signup.json', data=signup_data)
        except httpx.HTTPError as e:
            logger.error(f"❌ Registrar customer lookup/signup failed for {email}: {e}")
            return {'success': False, 'error': str(e)}

        customer_id = None if self._is_error(status_code, body) else self._as_int(body)
        if customer_id is None:
            logger.error(f"❌ Registrar customer signup failed for {email}: {self._error_message(body)}")
            return {'success': False, 'error': self._error_message(body), 'response': body}

        logger.info(f"✅ Created registrar customer {customer_id} for {email}")
        return {'success': True, 'customer_id': str(customer_id), 'created': True}

    async def get_or_create_contact(self, customer_id: str, name: str, email: str, phone: str, company: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a registrant contact under the customer

        The registrar has no contact search, so a new contact is added on every
        run; duplicate contacts are harmless.
        """
        if not self._is_configured():
            return {'success': False, 'error': 'ResellerClub credentials not configured'}

        country_code, subscriber = self.split_phone(phone)
        contact_data = {
            'name': name,
            'company': company or name,
            'email': email,
            **self.address,
            'phone-cc': country_code,
            'phone': subscriber,
            'customer-id': customer_id,
            'type': 'Contact',
        }

        try:
            status_code, body = await self._request('POST', 'contacts/add.json', data=contact_data)
        except httpx.HTTPError as e:
            logger.error(f"❌ Registrar contact creation failed for customer {customer_id}: {e}")
            return {'success': False, 'error': str(e)}

        contact_id = None if self._is_error(status_code, body) else self._as_int(body)
        if contact_id is None:
            logger.error(f"❌ Registrar contact creation failed: {self._error_message(body)}")
            return {'success': False, 'error': self._error_message(body), 'response': body}

        logger.info(f"✅ Created registrar contact {contact_id} for customer {customer_id}")
        return {'success': True, 'contact_id': str(contact_id)}

    # ====================================================================
    # REGISTRATION AND NAMESERVERS
    # ====================================================================

    async def register_domain(self, domain_name: str, customer_id: str, contact_id: str, nameservers: List[str], years: int = 1) -> Dict[str, Any]:
        """
        Register a domain for one customer/contact with the given nameservers

        Returns one of:
            {'success': True, 'order_id': str, 'already_registered': False}
            {'success': True, 'order_id': str, 'already_registered': True}   (held in this account)
            {'success': False, 'error': str, 'response': raw body}
        """
        if not self._is_configured():
            return {'success': False, 'error': 'ResellerClub credentials not configured'}

        registration_data = {
            'domain-name': domain_name,
            'years': years,
            'ns': list(nameservers),
            'customer-id': customer_id,
            'reg-contact-id': contact_id,
            'admin-contact-id': contact_id,
            'tech-contact-id': contact_id,
            'billing-contact-id': contact_id,
            'invoice-option': 'NoInvoice',
            'protect-privacy': 'false',
        }

        logger.info(f"📝 Registering {domain_name} for customer {customer_id} with nameservers {nameservers}")
        try:
            status_code, body = await self._request('POST', 'domains/register.json', data=registration_data)
        except httpx.HTTPError as e:
            logger.error(f"❌ Domain registration request failed for {domain_name}: {e}")
            return {'success': False, 'error': str(e)}

        if isinstance(body, dict) and body.get('entityid') and not self._is_error(status_code, body):
            order_id = str(body['entityid'])
            logger.info(f"✅ Domain registered successfully: {domain_name} (order {order_id})")
            return {'success': True, 'order_id': order_id, 'already_registered': False}

        error_message = self._error_message(body)
        if any(marker in error_message.lower() for marker in ALREADY_REGISTERED_MARKERS):
            # Only an order in our own reseller account means an earlier run registered it
            order_id = await self.get_order_id(domain_name)
            if not order_id:
                logger.error(f"❌ {domain_name} is registered but not in this reseller account: {error_message}")
                return {'success': False, 'error': f"{domain_name} is registered elsewhere: {error_message}", 'response': body}

            logger.info(f"🔄 {domain_name} already registered under order {order_id}, syncing nameservers")
            sync_result = await self.update_nameservers(domain_name, nameservers, order_id=order_id)
            if not sync_result.get('success'):
                logger.warning(f"⚠️ Nameserver sync skipped for {domain_name}: {sync_result.get('error')}")
            return {'success': True, 'order_id': order_id, 'already_registered': True}

        logger.error(f"❌ Domain registration failed for {domain_name}: {error_message}")
        return {'success': False, 'error': error_message, 'response': body}

    async def get_order_id(self, domain_name: str) -> Optional[str]:
        try:
            status_code, body = await self._request(
                'GET', 'domains/orderid.json',
                params={'domain-name': domain_name},
                retry=True
            )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Order id lookup failed for {domain_name}: {e}")
            return None
        order_id = None if self._is_error(status_code, body) else self._as_int(body)
        return str(order_id) if order_id is not None else None

    async def update_nameservers(self, domain_name: str, nameservers: List[str], order_id: Optional[str] = None) -> Dict[str, Any]:
        """Point an order we already hold at the given nameservers"""
        order_id = order_id or await self.get_order_id(domain_name)
        if not order_id:
            return {'success': False, 'error': f'No order found for {domain_name}'}

        try:
            status_code, body = await self._request(
                'POST', 'domains/modify-ns.json',
                data={'order-id': order_id, 'ns': list(nameservers)}
            )
        except httpx.HTTPError as e:
            return {'success': False, 'error': str(e)}

        if self._is_error(status_code, body):
            return {'success': False, 'error': self._error_message(body), 'response': body}

        logger.info(f"✅ Nameservers updated for {domain_name}: {nameservers}")
        return {'success': True, 'order_id': order_id}

def get_resellerclub_service() -> ResellerClubService:
    """Get the global ResellerClub service instance"""
    return ResellerClubService()

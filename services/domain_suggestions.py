"""
Domain name suggestions for a business
Generates candidate names and checks them against the registrar in small batches
"""

import os
import re
import asyncio
import logging
import unicodedata
from typing import Any, Dict, List, Optional

from pricing_utils import calculate_plan_price, format_money

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 15
MIN_LABEL_LENGTH = 3
MAX_LABEL_LENGTH = 30
AVAILABILITY_BATCH_SIZE = 3
AVAILABILITY_BATCH_DELAY = 1.0
AVAILABILITY_TIMEOUT = 5.0

GENERIC_SUFFIXES = ('online', 'india', 'hub', 'official')
STOP_WORDS = {'the', 'and', 'of', 'a', 'an', 'pvt', 'ltd'}

DOMAIN_PATTERN = re.compile(r'^(?=.{4,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$')

def get_default_tlds() -> List[str]:
    raw = os.getenv('DOMAIN_TLDS', 'in')
    return [tld.strip().lstrip('.').lower() for tld in raw.split(',') if tld.strip()]

def normalize_domain(domain_name: str) -> Optional[str]:
    """
    Lowercase a user-supplied domain and strip scheme, www, path and trailing dot

    Returns None when the result is not a valid registrable hostname.
    """
    if not domain_name:
        return None
    domain = domain_name.strip().lower()
    domain = re.sub(r'^[a-z]+://', '', domain)
    domain = domain.split('/', 1)[0].strip('.')
    if domain.startswith('www.'):
        domain = domain[4:]
    return domain if DOMAIN_PATTERN.match(domain) else None

def _words(text: str) -> List[str]:
    ascii_text = unicodedata.normalize('NFKD', text or '').encode('ascii', 'ignore').decode('ascii').lower()
    ascii_text = ascii_text.replace('&', ' and ')
    return [word for word in re.findall(r'[a-z0-9]+', ascii_text) if word not in STOP_WORDS]

def _clean_label(label: str) -> Optional[str]:
    label = re.sub(r'-{2,}', '-', label).strip('-')
    label = label[:MAX_LABEL_LENGTH].rstrip('-')
    return label if len(label) >= MIN_LABEL_LENGTH else None

def generate_domain_candidates(business_name: str, city: Optional[str] = None, tlds: Optional[List[str]] = None) -> List[str]:
    """
    Build up to 15 candidate domains for a business, most natural first

    Example:
        generate_domain_candidates("Sharma Dhaba", "Delhi")
        -> ['sharmadhaba.in', 'sharma-dhaba.in', 'sharmadhabadelhi.in', ...]
    """
    words = _words(business_name)
    if not words:
        return []
    city_words = _words(city) if city else []
    city_label = ''.join(city_words)
    tlds = tlds or get_default_tlds()

    joined = ''.join(words)
    labels = [joined]
    if len(words) > 1:
        labels.append('-'.join(words))
    if city_label:
        labels.append(f"{joined}{city_label}")
    if len(words) > 1:
        labels.append(words[0])
        labels.append(''.join(word[0] for word in words[:-1]) + words[-1])
        if city_label:
            labels.append(f"{words[0]}{city_label}")
    labels.extend(f"{joined}{suffix}" for suffix in GENERIC_SUFFIXES)
    labels.append(f"my{joined}")
    if city_label:
        labels.append(f"{joined}-{city_label}")

    candidates: List[str] = []
    seen = set()
    for raw_label in labels:
        label = _clean_label(raw_label)
        if not label:
            continue
        for tld in tlds:
            domain = f"{label}.{tld}"
            if domain in seen:
                continue
            seen.add(domain)
            candidates.append(domain)
            if len(candidates) >= MAX_CANDIDATES:
                return candidates
    return candidates

async def _check_one(registrar, domain_name: str) -> bool:
    try:
        result = await registrar.check_domain_availability(domain_name, timeout=AVAILABILITY_TIMEOUT)
    except Exception as e:
        logger.warning(f"⚠️ Availability check for {domain_name} failed: {e}")
        return False
    return bool(result and result.get('available'))

async def find_available_domains(
    registrar,
    business_name: str,
    city: Optional[str] = None,
    count: int = 3,
    batch_delay: float = AVAILABILITY_BATCH_DELAY
) -> List[Dict[str, Any]]:
    """
    Check candidates in batches of 3 and return the first `count` available ones

    Each result carries the premium plan price for that domain:
        {'domain': 'sharmadhaba.in', 'price': Decimal('1499'), 'price_display': '₹1,499'}
    """
    candidates = generate_domain_candidates(business_name, city)
    available: List[Dict[str, Any]] = []

    for start in range(0, len(candidates), AVAILABILITY_BATCH_SIZE):
        if start > 0:
            await asyncio.sleep(batch_delay)

        batch = candidates[start:start + AVAILABILITY_BATCH_SIZE]
        results = await asyncio.gather(*(_check_one(registrar, domain) for domain in batch))

        for domain, is_available in zip(batch, results):
            if not is_available:
                continue
            price = calculate_plan_price(domain)
            available.append({'domain': domain, 'price': price, 'price_display': format_money(price, 'INR')})
            if len(available) >= count:
                logger.info(f"🔍 Found {count} available domains for '{business_name}'")
                return available

    logger.info(f"🔍 Found {len(available)}/{count} available domains for '{business_name}' from {len(candidates)} candidates")
    return available

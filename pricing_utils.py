"""
Pricing utilities for the premium custom-domain plan
Currency formatting and plan price calculation
"""

import os
import logging
from typing import Union
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

logger = logging.getLogger(__name__)

# Yearly registrar cost per TLD, in rupees
DOMAIN_COST_INR = {
    'in': Decimal('500'),
    'co.in': Decimal('400'),
    'com': Decimal('1000'),
}
DEFAULT_DOMAIN_COST_INR = Decimal('1000')

def _premium_base_price() -> Decimal:
    raw_value = os.getenv('PREMIUM_PLAN_BASE_PRICE', '999')
    try:
        return Decimal(raw_value)
    except InvalidOperation:
        logger.warning(f"⚠️ Invalid PREMIUM_PLAN_BASE_PRICE '{raw_value}', using 999")
        return Decimal('999')

def _group_indian(integer_part: str) -> str:
    """12345678 -> 1,23,45,678"""
    if len(integer_part) <= 3:
        return integer_part
    head, tail = integer_part[:-3], integer_part[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups) + "," + tail

def format_money(amount: Union[float, int, Decimal], currency: str = "INR", show_currency: bool = True) -> str:
    """
    Format monetary amount for display

    Args:
        amount: Amount to format
        currency: Currency code (default: INR)
        show_currency: Whether to show currency symbol

    Returns:
        str: Formatted money string, e.g. ₹1,499 or $12.50
    """
    try:
        decimal_amount = Decimal(str(amount)) if isinstance(amount, (int, float)) else amount
        rounded_amount = decimal_amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        currency = currency.upper()

        if currency == 'INR':
            integer_part, _, fraction = f"{rounded_amount:.2f}".partition('.')
            sign = ''
            if integer_part.startswith('-'):
                sign, integer_part = '-', integer_part[1:]
            formatted = sign + _group_indian(integer_part)
            if fraction != '00':
                formatted = f"{formatted}.{fraction}"
        else:
            formatted = f"{rounded_amount:,.2f}"

        if not show_currency:
            return formatted

        currency_symbols = {
            'INR': '₹',
            'USD': '$',
            'EUR': '€',
            'GBP': '£'
        }
        return f"{currency_symbols.get(currency, currency + ' ')}{formatted}"

    except (InvalidOperation, ValueError, AttributeError) as e:
        logger.warning(f"Error formatting money: {e}")
        return str(amount)

def get_domain_tld(domain: str) -> str:
    """Longest known TLD suffix of a domain (co.in before in)"""
    labels = domain.lower().strip('.').split('.')
    if len(labels) >= 3 and '.'.join(labels[-2:]) in DOMAIN_COST_INR:
        return '.'.join(labels[-2:])
    return labels[-1]

def calculate_plan_price(domain: str) -> Decimal:
    """
    Yearly premium plan price for a domain: plan base + registrar cost for its TLD

    Example:
        calculate_plan_price('sharmadhaba.in') -> Decimal('1499')
    """
    domain_cost = DOMAIN_COST_INR.get(get_domain_tld(domain), DEFAULT_DOMAIN_COST_INR)
    return _premium_base_price() + domain_cost

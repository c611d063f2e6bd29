"""
Plan pricing, message catalogue and share link tests
"""

from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest

from brand_config import build_share_link, get_platform_name, get_support_contact
from localization import get_language_config, t
from pricing_utils import calculate_plan_price, format_money, get_domain_tld


class TestPricing:

    @pytest.mark.parametrize('domain, expected', [
        ('sharmadhaba.in', Decimal('1499')),
        ('sharmadhaba.co.in', Decimal('1399')),
        ('sharmadhaba.com', Decimal('1999')),
        ('sharmadhaba.store', Decimal('1999')),
    ])
    def test_plan_price_by_tld(self, domain, expected, monkeypatch):
        monkeypatch.delenv('PREMIUM_PLAN_BASE_PRICE', raising=False)
        assert calculate_plan_price(domain) == expected

    def test_base_price_from_environment(self, monkeypatch):
        monkeypatch.setenv('PREMIUM_PLAN_BASE_PRICE', '1299')
        assert calculate_plan_price('sharmadhaba.in') == Decimal('1799')

    def test_invalid_base_price_falls_back(self, monkeypatch):
        monkeypatch.setenv('PREMIUM_PLAN_BASE_PRICE', 'lots')
        assert calculate_plan_price('sharmadhaba.in') == Decimal('1499')

    def test_second_level_tld_detection(self):
        assert get_domain_tld('sharmadhaba.co.in') == 'co.in'
        assert get_domain_tld('co.in') == 'in'
        assert get_domain_tld('SharmaDhaba.IN.') == 'in'

    @pytest.mark.parametrize('amount, currency, expected', [
        (Decimal('1499'), 'INR', '₹1,499'),
        (12345678, 'INR', '₹1,23,45,678'),
        (99.5, 'INR', '₹99.50'),
        (12.5, 'USD', '$12.50'),
        (1234.5, 'usd', '$1,234.50'),
    ])
    def test_format_money(self, amount, currency, expected):
        assert format_money(amount, currency) == expected

    def test_format_money_without_symbol(self):
        assert format_money(Decimal('1499'), show_currency=False) == '1,499'


class TestMessageCatalogue:

    def test_progress_messages_are_numbered(self):
        for number, key in enumerate(['step_zone', 'step_dns', 'step_registration', 'step_tunnel', 'step_saved'], start=1):
            assert f"({number}/5)" in t(f'provisioning.{key}', 'en', domain='sharmadhaba.in')
            assert f"({number}/5)" in t(f'provisioning.{key}', 'hi', domain='sharmadhaba.in')

    def test_regional_codes_resolve_to_base_language(self):
        assert get_language_config().resolve_language('hi-IN') == 'hi'
        assert get_language_config().resolve_language('ta') == get_language_config().default_language

    def test_missing_key_falls_back_to_english_then_key(self, monkeypatch):
        config = get_language_config()
        monkeypatch.setitem(config.translations, 'hi', {})

        assert t('propagation.share_button', 'hi') == 'Share on WhatsApp'
        assert t('propagation.no_such_message', 'hi') == 'propagation.no_such_message'

    def test_missing_placeholder_returns_raw_template(self):
        assert '{domain}' in t('provisioning.step_zone', 'en')

    def test_failure_notice_names_support_contact(self):
        text = t('provisioning.failed', 'en', domain='sharmadhaba.in', support=get_support_contact())
        assert get_support_contact() in text
        assert 'sharmadhaba.in' in text


class TestShareLink:

    def test_share_link_prefills_announcement(self):
        link = build_share_link('sharmadhaba.in', 'Sharma Dhaba', 'en')

        parsed = urlparse(link)
        assert f"{parsed.scheme}://{parsed.netloc}/" == 'https://wa.me/'
        text = parse_qs(parsed.query)['text'][0]
        assert 'Sharma Dhaba' in text
        assert 'https://sharmadhaba.in' in text
        assert f"Made with {get_platform_name()}" in text

    def test_domain_used_when_business_name_missing(self):
        text = parse_qs(urlparse(build_share_link('sharmadhaba.in', '', 'en')).query)['text'][0]
        assert text.startswith('Check out sharmadhaba.in online')

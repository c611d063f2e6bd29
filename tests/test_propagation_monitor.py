"""
Tests for DNS propagation monitoring and the owner notifications it sends
"""

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest

from admin_alerts import AlertCategory, AlertSeverity
from propagation_monitor import PROPAGATION_SCHEDULE_MINUTES, PropagationMonitor

from conftest import FakeMessenger, SiteRecordFactory


def build_monitor(messenger, alerter, outcomes):
    """Monitor whose liveness checks return the given outcomes in order and never really sleeps"""
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monitor = PropagationMonitor(messenger=messenger, alerter=alerter, sleep=fake_sleep)
    monitor.check_domain_live = AsyncMock(side_effect=[{'live': live} for live in outcomes])
    return monitor, sleeps


@pytest.fixture
def site():
    return SiteRecordFactory(
        slug='sharma-dhaba',
        business_name='Sharma Dhaba',
        owner_phone='919876543210',
        custom_domain='sharmadhaba.in',
        pending_domain=None
    )


@pytest.mark.asyncio
class TestMonitorSchedule:

    async def test_live_on_first_poll_sends_share_button(self, site, alerter):
        messenger = FakeMessenger()
        monitor, sleeps = build_monitor(messenger, alerter, [True])

        result = await monitor.monitor(site, 'sharmadhaba.in')

        assert result == {'live': True, 'attempts': 1, 'elapsed_minutes': 2}
        assert sleeps == [120]
        assert messenger.texts == []
        assert len(messenger.calls_to_action) == 1

        contact, body, url, label = messenger.calls_to_action[0]
        assert contact == '919876543210'
        assert 'https://sharmadhaba.in' in body
        assert label == 'Share on WhatsApp'
        share_text = parse_qs(urlparse(url).query)['text'][0]
        assert 'Sharma Dhaba' in share_text
        assert 'https://sharmadhaba.in' in share_text

        severity, category = alerter.send_alert.call_args.args[:2]
        assert severity == AlertSeverity.INFO
        assert category == AlertCategory.DNS_PROPAGATION

    async def test_early_failures_send_progress_notes(self, site, alerter):
        messenger = FakeMessenger()
        monitor, sleeps = build_monitor(messenger, alerter, [False, False, True])

        result = await monitor.monitor(site, 'sharmadhaba.in')

        assert result['live'] is True
        assert result['attempts'] == 3
        assert result['elapsed_minutes'] == 17
        assert sleeps == [120, 300, 600]
        # Checks at 2 and 7 minutes are before the cutoff
        assert len(messenger.texts) == 2
        assert '2 min' in messenger.texts[0][1]
        assert '7 min' in messenger.texts[1][1]
        assert len(messenger.calls_to_action) == 1

    async def test_gives_up_after_schedule_and_alerts_operators(self, site, alerter):
        messenger = FakeMessenger()
        polls = len(PROPAGATION_SCHEDULE_MINUTES)
        monitor, _ = build_monitor(messenger, alerter, [False] * polls)

        result = await monitor.monitor(site, 'sharmadhaba.in')

        assert result == {'live': False, 'attempts': polls, 'elapsed_minutes': sum(PROPAGATION_SCHEDULE_MINUTES)}
        assert messenger.calls_to_action == []
        assert 'longer than usual' in messenger.texts[-1][1]
        assert alerter.send_alert.await_count == 1

        severity, category, _, message, details = alerter.send_alert.call_args.args
        assert severity == AlertSeverity.ERROR
        assert category == AlertCategory.DNS_PROPAGATION
        assert message.startswith('ACTION REQUIRED')
        assert details['attempts'] == polls

    async def test_check_errors_count_as_not_live(self, site, alerter):
        messenger = FakeMessenger()
        monitor = PropagationMonitor(messenger=messenger, alerter=alerter, schedule_minutes=[1, 1], sleep=AsyncMock())
        monitor.check_domain_live = AsyncMock(side_effect=[RuntimeError('resolver exploded'), {'live': True}])

        result = await monitor.monitor(site, 'sharmadhaba.in')

        assert result['live'] is True
        assert result['attempts'] == 2

    async def test_messenger_outage_does_not_stop_polling(self, site, alerter):
        messenger = FakeMessenger()
        messenger.send = AsyncMock(side_effect=RuntimeError('WhatsApp down'))
        monitor, _ = build_monitor(messenger, alerter, [False, True])

        result = await monitor.monitor(site, 'sharmadhaba.in')

        assert result['live'] is True


@pytest.mark.asyncio
class TestLivenessCheck:

    async def test_unresolved_domain_skips_https(self, alerter):
        monitor = PropagationMonitor(messenger=FakeMessenger(), alerter=alerter)

        with patch.object(monitor, 'resolve_domain', AsyncMock(return_value=[])), \
             patch.object(monitor, 'check_https', AsyncMock()) as mock_https:
            result = await monitor.check_domain_live('sharmadhaba.in')

        assert result['live'] is False
        assert result['resolved'] is False
        mock_https.assert_not_awaited()

    async def test_resolved_and_serving_is_live(self, alerter):
        monitor = PropagationMonitor(messenger=FakeMessenger(), alerter=alerter)

        with patch.object(monitor, 'resolve_domain', AsyncMock(return_value=['104.21.3.4'])), \
             patch.object(monitor, 'check_https', AsyncMock(return_value=200)):
            result = await monitor.check_domain_live('sharmadhaba.in')

        assert result == {'live': True, 'resolved': True, 'addresses': ['104.21.3.4'], 'status_code': 200}

    async def test_origin_error_is_not_live(self, alerter):
        monitor = PropagationMonitor(messenger=FakeMessenger(), alerter=alerter)

        # 530 is what the edge returns while the tunnel has no route for the host
        with patch.object(monitor, 'resolve_domain', AsyncMock(return_value=['104.21.3.4'])), \
             patch.object(monitor, 'check_https', AsyncMock(return_value=530)):
            result = await monitor.check_domain_live('sharmadhaba.in')

        assert result['live'] is False
        assert result['resolved'] is True

    async def test_tls_failure_is_not_live(self, alerter):
        monitor = PropagationMonitor(messenger=FakeMessenger(), alerter=alerter)

        with patch.object(monitor, 'resolve_domain', AsyncMock(return_value=['104.21.3.4'])), \
             patch.object(monitor, 'check_https', AsyncMock(return_value=None)):
            result = await monitor.check_domain_live('sharmadhaba.in')

        assert result['live'] is False

"""
Tunnel ingress config editing tests
"""

from unittest.mock import AsyncMock, patch

import pytest

from services.tunnel import TunnelIngressService

BASE_CONFIG = """tunnel: 6ff42ae2-765d-4adf-8112-31c55c1551ef
credentials-file: /root/.cloudflared/6ff42ae2-765d-4adf-8112-31c55c1551ef.json

ingress:
  - hostname: sherusites.com
    service: http://localhost:4000
  - service: http_status:404
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'config.yml'
    path.write_text(BASE_CONFIG, encoding='utf-8')
    return path


@pytest.fixture
def tunnel(config_file):
    return TunnelIngressService(
        config_path=str(config_file),
        system_config_path='',
        restart_command='systemctl restart cloudflared',
        origin_port=4000
    )


class TestConfigEditing:

    def test_rules_go_before_catch_all(self, tunnel):
        updated = tunnel.add_rules_to_config(BASE_CONFIG, 'sharmadhaba.in')

        lines = updated.splitlines()
        catch_all = lines.index('  - service: http_status:404')
        assert lines[catch_all - 4:catch_all] == [
            '  - hostname: sharmadhaba.in',
            '    service: http://localhost:4000',
            '  - hostname: www.sharmadhaba.in',
            '    service: http://localhost:4000',
        ]
        assert lines[-1] == '  - service: http_status:404'

    def test_rules_appended_without_catch_all(self, tunnel):
        updated = tunnel.add_rules_to_config("tunnel: abc\ncredentials-file: /x.json", 'sharmadhaba.in')

        assert updated.endswith(
            "ingress:\n"
            "  - hostname: sharmadhaba.in\n"
            "    service: http://localhost:4000\n"
            "  - hostname: www.sharmadhaba.in\n"
            "    service: http://localhost:4000\n"
        )

    def test_hostname_detection_is_exact(self):
        assert TunnelIngressService.has_hostname(BASE_CONFIG, 'sherusites.com')
        assert not TunnelIngressService.has_hostname(BASE_CONFIG, 'sites.com')
        assert not TunnelIngressService.has_hostname("  - hostname: www.sharmadhaba.in\n", 'sharmadhaba.in')


@pytest.mark.asyncio
class TestAddHostname:

    async def test_new_domain_is_written_and_tunnel_restarted(self, tunnel, config_file):
        with patch('services.tunnel._run_command', AsyncMock(return_value=(0, '', ''))) as mock_run:
            result = await tunnel.add_hostname('sharmadhaba.in')

        assert result == {'success': True, 'changed': True, 'restarted': True}
        assert TunnelIngressService.has_hostname(config_file.read_text(encoding='utf-8'), 'sharmadhaba.in')
        mock_run.assert_awaited_once_with('systemctl', 'restart', 'cloudflared')

    async def test_second_add_is_a_noop(self, tunnel, config_file):
        with patch('services.tunnel._run_command', AsyncMock(return_value=(0, '', ''))) as mock_run:
            await tunnel.add_hostname('sharmadhaba.in')
            result = await tunnel.add_hostname('sharmadhaba.in')

        assert result == {'success': True, 'changed': False, 'restarted': False}
        assert config_file.read_text(encoding='utf-8').count('hostname: sharmadhaba.in') == 1
        assert mock_run.await_count == 1

    async def test_config_is_mirrored_to_system_path(self, config_file, tmp_path):
        mirror = tmp_path / 'etc-config.yml'
        tunnel = TunnelIngressService(config_path=str(config_file), system_config_path=str(mirror))

        with patch('services.tunnel._run_command', AsyncMock(return_value=(0, '', ''))):
            await tunnel.add_hostname('sharmadhaba.in')

        assert mirror.read_text(encoding='utf-8') == config_file.read_text(encoding='utf-8')

    async def test_failed_restart_still_reports_change(self, tunnel):
        with patch('services.tunnel._run_command', AsyncMock(return_value=(1, '', 'Unit cloudflared.service not found.'))):
            result = await tunnel.add_hostname('sharmadhaba.in')

        assert result == {'success': True, 'changed': True, 'restarted': False}

    async def test_missing_restart_binary_is_not_fatal(self, tunnel):
        with patch('services.tunnel._run_command', AsyncMock(side_effect=FileNotFoundError('systemctl'))):
            result = await tunnel.add_hostname('sharmadhaba.in')

        assert result['success'] is True
        assert result['restarted'] is False

    async def test_unreadable_config_fails(self, tmp_path):
        tunnel = TunnelIngressService(config_path=str(tmp_path / 'missing.yml'), system_config_path='')

        result = await tunnel.add_hostname('sharmadhaba.in')

        assert result['success'] is False
        assert 'error' in result

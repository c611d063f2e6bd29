"""
Cloudflare Tunnel ingress management
Adds customer hostnames to the shared cloudflared config and restarts the daemon
"""

import os
import re
import shlex
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# A rule without a hostname, e.g. "  - service: http_status:404"
CATCH_ALL_RULE = re.compile(r'^(?P<indent>[ \t]*)-[ \t]*service:', re.MULTILINE)

async def _run_command(*cmd: str) -> Tuple[int, str, str]:
    """Run a host command and return (returncode, stdout, stderr)"""
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    stdout, stderr = await process.communicate()
    return (
        process.returncode or 0,
        stdout.decode().strip(),
        stderr.decode().strip(),
    )

class TunnelIngressService:
    """Maintains hostname ingress rules in the cloudflared config file"""

    def __init__(
        self,
        config_path: Optional[str] = None,
        system_config_path: Optional[str] = None,
        restart_command: Optional[str] = None,
        origin_port: Optional[int] = None
    ):
        self.config_path = Path(config_path or os.getenv('TUNNEL_CONFIG_PATH', '~/.cloudflared/config.yml')).expanduser()
        mirror = system_config_path if system_config_path is not None else os.getenv('TUNNEL_SYSTEM_CONFIG_PATH', '/etc/cloudflared/config.yml')
        self.system_config_path = Path(mirror) if mirror else None
        self.restart_command = shlex.split(restart_command or os.getenv('TUNNEL_RESTART_COMMAND', 'systemctl restart cloudflared'))
        self.origin_port = origin_port or int(os.getenv('SITE_SERVER_PORT', '4000'))

    @property
    def origin_service(self) -> str:
        return f"http://localhost:{self.origin_port}"

    @staticmethod
    def has_hostname(config_text: str, domain_name: str) -> bool:
        pattern = rf'^[ \t]*-?[ \t]*hostname:[ \t]*["\']?{re.escape(domain_name)}["\']?[ \t]*$'
        return re.search(pattern, config_text, re.MULTILINE) is not None

    def build_rules(self, domain_name: str, indent: str) -> str:
        lines = []
        for hostname in (domain_name, f"www.{domain_name}"):
            lines.append(f"{indent}- hostname: {hostname}")
            lines.append(f"{indent}  service: {self.origin_service}")
        return "\n".join(lines) + "\n"

    def add_rules_to_config(self, config_text: str, domain_name: str) -> str:
        """Insert apex and www rules before the catch-all rule, or append them"""
        catch_all = CATCH_ALL_RULE.search(config_text)
        if catch_all:
            rules = self.build_rules(domain_name, catch_all.group('indent'))
            return config_text[:catch_all.start()] + rules + config_text[catch_all.start():]

        if config_text and not config_text.endswith("\n"):
            config_text += "\n"
        if not re.search(r'^ingress:', config_text, re.MULTILINE):
            config_text += "ingress:\n"
        return config_text + self.build_rules(domain_name, "  ")

    async def restart_tunnel(self) -> bool:
        try:
            returncode, _, stderr = await _run_command(*self.restart_command)
        except OSError as e:
            logger.warning(f"⚠️ Could not run tunnel restart command {self.restart_command}: {e}")
            return False

        if returncode != 0:
            logger.warning(f"⚠️ Tunnel restart exited with {returncode}: {stderr}")
            return False

        logger.info("🔄 Tunnel daemon restarted")
        return True

    async def add_hostname(self, domain_name: str) -> Dict[str, Any]:
        """
        Route a domain (apex and www) through the tunnel to the local site server

        Returns:
            {'success': True, 'changed': bool, 'restarted': bool} or
            {'success': False, 'error': str} when the config cannot be read or written
        """
        try:
            config_text = await asyncio.to_thread(self.config_path.read_text, encoding='utf-8')
        except OSError as e:
            logger.error(f"❌ Cannot read tunnel config {self.config_path}: {e}")
            return {'success': False, 'error': str(e)}

        if self.has_hostname(config_text, domain_name):
            logger.info(f"✅ Tunnel already routes {domain_name}")
            return {'success': True, 'changed': False, 'restarted': False}

        updated_text = self.add_rules_to_config(config_text, domain_name)

        try:
            await asyncio.to_thread(self.config_path.write_text, updated_text, encoding='utf-8')
        except OSError as e:
            logger.error(f"❌ Cannot write tunnel config {self.config_path}: {e}")
            return {'success': False, 'error': str(e)}

        if self.system_config_path and self.system_config_path != self.config_path:
            try:
                await asyncio.to_thread(self.system_config_path.write_text, updated_text, encoding='utf-8')
            except OSError as e:
                logger.warning(f"⚠️ Could not mirror tunnel config to {self.system_config_path}: {e}")

        logger.info(f"🚇 Added tunnel ingress for {domain_name} -> {self.origin_service}")
        restarted = await self.restart_tunnel()
        return {'success': True, 'changed': True, 'restarted': restarted}

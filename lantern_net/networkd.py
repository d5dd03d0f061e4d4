from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

from lantern_net.core import Settings
from lantern_net.errors import CommandFailed, EnterpriseWiFiError, InvalidConfig
from lantern_net.models import EnterpriseAuthMethod, EnterpriseCredentials, WifiCredentials, WifiSecurity
from lantern_net.system import Runner, _run, _write_text, describe_failure


logger = logging.getLogger(__name__)


@dataclass
class Ipv6Config:
    enable_ipv6: bool = True
    addresses: List[str] = field(default_factory=list)
    gateway: str | None = None
    dns_servers: List[str] = field(default_factory=list)
    accept_ra: bool = True
    privacy_extensions: bool = False
    dhcpv6: bool = True


def validate_ip(value: str, require_prefix: bool = False) -> str:
    text = str(value or "").strip()
    if require_prefix and "/" not in text:
        raise InvalidConfig(f"address must be in CIDR form: {value!r}")
    try:
        if "/" in text:
            ipaddress.ip_interface(text)
        else:
            ipaddress.ip_address(text)
    except ValueError:
        raise InvalidConfig(f"invalid IP address: {value!r}") from None
    return text


def validate_gateway(value: str) -> str:
    text = str(value or "").strip()
    try:
        ipaddress.ip_address(text)
    except ValueError:
        raise InvalidConfig(f"invalid gateway: {value!r}") from None
    return text


def render_network_file(
    interface: str,
    dhcp: bool,
    ip: str | None = None,
    gateway: str | None = None,
    dns: Sequence[str] = (),
) -> str:
    lines = ["[Match]", f"Name={interface}", "", "[Network]"]
    if dhcp:
        lines.append("DHCP=yes")
    else:
        if not ip:
            raise InvalidConfig("static addressing requires an address (CIDR)")
        lines.append(f"Address={validate_ip(ip, require_prefix=True)}")
        if gateway:
            lines.append(f"Gateway={validate_gateway(gateway)}")
        for server in dns:
            lines.append(f"DNS={validate_ip(server)}")
    lines.extend(["", "[Link]", "RequiredForOnline=yes"])
    return "\n".join(lines) + "\n"


def render_ipv6_network_file(interface: str, config: Ipv6Config, dhcp4: bool = True) -> str:
    lines = ["[Match]", f"Name={interface}", "", "[Network]"]
    if dhcp4:
        lines.append("DHCP=yes" if config.enable_ipv6 and config.dhcpv6 else "DHCP=ipv4")
    elif config.enable_ipv6 and config.dhcpv6:
        lines.append("DHCP=ipv6")
    if config.enable_ipv6:
        for address in config.addresses:
            lines.append(f"Address={validate_ip(address, require_prefix=True)}")
        if config.gateway:
            lines.append(f"Gateway={validate_gateway(config.gateway)}")
        for server in config.dns_servers:
            lines.append(f"DNS={validate_ip(server)}")
        lines.append(f"IPv6AcceptRA={'yes' if config.accept_ra else 'no'}")
        lines.append(f"IPv6PrivacyExtensions={'yes' if config.privacy_extensions else 'no'}")
    else:
        lines.append("IPv6AcceptRA=no")
    lines.extend(["", "[Link]", "RequiredForOnline=yes"])
    return "\n".join(lines) + "\n"


def _wpa_string(value: str) -> str:
    """Quote a value for wpa_supplicant, hex-encoding it when quoting cannot represent it."""
    if any(char in value for char in '"\\\n\r') or not value.isprintable():
        return value.encode("utf-8").hex()
    return f'"{value}"'


def _enterprise_lines(enterprise: EnterpriseCredentials) -> List[str]:
    method = enterprise.auth_method
    if method is EnterpriseAuthMethod.TLS:
        if not enterprise.client_cert or not enterprise.private_key:
            raise EnterpriseWiFiError("TLS authentication requires a client certificate and private key")
    elif not enterprise.username:
        raise EnterpriseWiFiError(f"{method.value} authentication requires a username")
    elif not enterprise.password:
        raise EnterpriseWiFiError(f"{method.value} authentication requires a password")

    lines = ["    key_mgmt=WPA-EAP", f"    eap={method.value}"]
    identity = enterprise.username or enterprise.identity or ""
    if identity:
        lines.append(f"    identity={_wpa_string(identity)}")
    if enterprise.identity and enterprise.username and enterprise.identity != enterprise.username:
        lines.append(f"    anonymous_identity={_wpa_string(enterprise.identity)}")
    if enterprise.password and method is not EnterpriseAuthMethod.TLS:
        lines.append(f"    password={_wpa_string(enterprise.password)}")
    if enterprise.ca_cert:
        lines.append(f"    ca_cert={_wpa_string(enterprise.ca_cert)}")
    if enterprise.client_cert:
        lines.append(f"    client_cert={_wpa_string(enterprise.client_cert)}")
    if enterprise.private_key:
        lines.append(f"    private_key={_wpa_string(enterprise.private_key)}")
    if enterprise.private_key_password:
        lines.append(f"    private_key_passwd={_wpa_string(enterprise.private_key_password)}")
    if enterprise.phase2_auth is not None:
        lines.append(f'    phase2="auth={enterprise.phase2_auth.value}"')
    return lines


def render_wpa_supplicant(credentials: WifiCredentials, country: str = "US") -> str:
    lines = ["ctrl_interface=/run/wpa_supplicant", "update_config=1"]
    if country:
        lines.append(f"country={country}")
    lines.extend(["", "network={", f"    ssid={_wpa_string(credentials.ssid)}"])
    if credentials.hidden:
        lines.append("    scan_ssid=1")
    security = credentials.security
    password = credentials.password or ""
    if credentials.enterprise is not None or security is WifiSecurity.ENTERPRISE:
        if credentials.enterprise is None:
            raise EnterpriseWiFiError("enterprise networks require enterprise credentials")
        lines.extend(_enterprise_lines(credentials.enterprise))
    elif security is WifiSecurity.OPEN:
        lines.append("    key_mgmt=NONE")
    elif security is WifiSecurity.WEP:
        if not password:
            raise InvalidConfig("WEP networks require a key")
        lines.extend([f"    wep_key0={_wpa_string(password)}", "    key_mgmt=NONE", "    wep_tx_keyidx=0"])
    elif security is WifiSecurity.WPA3:
        if not password:
            raise InvalidConfig("WPA3 networks require a password")
        lines.extend([f"    sae_password={_wpa_string(password)}", "    key_mgmt=SAE", "    ieee80211w=2"])
    else:
        if len(password) == 64 and all(char in "0123456789abcdefABCDEF" for char in password):
            lines.append(f"    psk={password}")
        elif 8 <= len(password) <= 63:
            lines.append(f'    psk="{password}"')
        else:
            raise InvalidConfig("WPA passphrase must be 8-63 characters")
        lines.append("    key_mgmt=WPA-PSK")
    lines.append("}")
    return "\n".join(lines) + "\n"


class NetworkdWriter:
    """Writes systemd-networkd and wpa_supplicant files and reloads the services."""

    def __init__(self, settings: Settings, runner: Runner = _run) -> None:
        self.settings = settings
        self.runner = runner

    @property
    def network_dir(self) -> Path:
        return self.settings.paths.networkd_dir

    def network_path(self, interface: str, wireless: bool) -> Path:
        prefix = "25" if wireless else "10"
        return self.network_dir / f"{prefix}-{interface}.network"

    def supplicant_path(self, interface: str) -> Path:
        return self.settings.paths.wpa_supplicant_dir / f"wpa_supplicant-{interface}.conf"

    def _check(self, command: List[str]) -> None:
        result = self.runner(command, timeout=self.settings.engine.command_timeout)
        if result.returncode != 0:
            raise CommandFailed(command, describe_failure(result))

    def reload(self, interface: str | None = None) -> None:
        self._check(["networkctl", "reload"])
        if interface:
            self._check(["networkctl", "reconfigure", interface])

    def apply_addressing(
        self,
        interface: str,
        dhcp: bool = True,
        ip: str | None = None,
        gateway: str | None = None,
        dns: Sequence[str] = (),
        wireless: bool = True,
    ) -> Path:
        content = render_network_file(interface, dhcp, ip, gateway, dns)
        path = self.network_path(interface, wireless)
        _write_text(path, content)
        logger.info("wrote %s", path)
        self.reload(interface)
        return path

    def apply_wifi_secrets(self, interface: str, credentials: WifiCredentials) -> Path:
        content = render_wpa_supplicant(credentials, self.settings.engine.country_code)
        path = self.supplicant_path(interface)
        _write_text(path, content, mode=0o600)
        unit = f"wpa_supplicant@{interface}.service"
        self._check(["systemctl", "enable", unit])
        self._check(["systemctl", "restart", unit])
        return path

    def teardown(self, interface: str) -> None:
        unit = f"wpa_supplicant@{interface}.service"
        for action in ("stop", "disable"):
            result = self.runner(["systemctl", action, unit], timeout=self.settings.engine.command_timeout)
            if result.returncode != 0:
                logger.info("systemctl %s %s: %s", action, unit, describe_failure(result))
        for path in (self.supplicant_path(interface), self.network_path(interface, True)):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
        self.reload()

    def remove_addressing(self, interface: str, wireless: bool = False) -> bool:
        path = self.network_path(interface, wireless)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        self.reload()
        return True

    def apply_ipv6(self, interface: str, config: Ipv6Config, dhcp4: bool = True) -> Path:
        content = render_ipv6_network_file(interface, config, dhcp4)
        path = self.network_dir / f"20-{interface}.network"
        _write_text(path, content)
        self.configure_ipv6_sysctl(interface, config)
        for address in config.addresses:
            result = self.runner(["ip", "-6", "addr", "add", address, "dev", interface])
            if result.returncode != 0 and "File exists" not in result.stdout:
                raise CommandFailed(["ip", "-6", "addr", "add", address, "dev", interface], describe_failure(result))
        self.reload(interface)
        return path

    def configure_ipv6_sysctl(self, interface: str, config: Ipv6Config) -> None:
        prefix = f"net.ipv6.conf.{interface}"
        if not config.enable_ipv6:
            self._check(["sysctl", "-w", f"{prefix}.disable_ipv6=1"])
            return
        self._check(["sysctl", "-w", f"{prefix}.disable_ipv6=0"])
        self._check(["sysctl", "-w", f"{prefix}.accept_ra={1 if config.accept_ra else 0}"])
        self._check(["sysctl", "-w", f"{prefix}.use_tempaddr={2 if config.privacy_extensions else 0}"])

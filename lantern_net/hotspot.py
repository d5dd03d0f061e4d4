from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from lantern_net.core import Settings
from lantern_net.errors import CommandFailed, HotspotError, InvalidConfig, NetworkError
from lantern_net.inventory import InterfaceInventory
from lantern_net.system import Runner, _run, _write_text, describe_failure


logger = logging.getLogger(__name__)


@dataclass
class HotspotConfig:
    ssid: str
    password: str
    interface: str
    channel: int = 6
    gateway: str = "192.168.4.1"

    @property
    def network_prefix(self) -> str:
        return self.gateway.rsplit(".", 1)[0]

    def validate(self) -> None:
        if not self.ssid or len(self.ssid.encode("utf-8")) > 32:
            raise InvalidConfig("hotspot SSID must be 1-32 bytes")
        if not 8 <= len(self.password) <= 63:
            raise InvalidConfig("hotspot passphrase must be 8-63 characters")
        if not 1 <= self.channel <= 14:
            raise InvalidConfig(f"channel {self.channel} is not a 2.4 GHz channel")
        try:
            ipaddress.IPv4Address(self.gateway)
        except ValueError:
            raise InvalidConfig(f"invalid hotspot gateway: {self.gateway!r}") from None


def render_hostapd_conf(config: HotspotConfig) -> str:
    lines = [
        f"interface={config.interface}",
        "driver=nl80211",
        f"ssid={config.ssid}",
        "hw_mode=g",
        f"channel={config.channel}",
        "wmm_enabled=1",
        "macaddr_acl=0",
        "auth_algs=1",
        "ignore_broadcast_ssid=0",
        "wpa=2",
        f"wpa_passphrase={config.password}",
        "wpa_key_mgmt=WPA-PSK",
        "rsn_pairwise=CCMP",
    ]
    return "\n".join(lines) + "\n"


def render_dnsmasq_conf(config: HotspotConfig) -> str:
    prefix = config.network_prefix
    lines = [
        f"interface={config.interface}",
        "bind-interfaces",
        f"listen-address={config.gateway}",
        f"dhcp-range={prefix}.10,{prefix}.50,255.255.255.0,24h",
        f"dhcp-option=3,{config.gateway}",
        "dhcp-option=6,8.8.8.8,8.8.4.4",
        "server=8.8.8.8",
        "log-dhcp",
    ]
    return "\n".join(lines) + "\n"


class HotspotManager:
    """Shares the host's uplink over a WiFi access point using hostapd and dnsmasq."""

    def __init__(self, settings: Settings, inventory: InterfaceInventory, runner: Runner = _run) -> None:
        self.settings = settings
        self.inventory = inventory
        self.runner = runner

    @property
    def runtime_dir(self) -> Path:
        return Path(self.settings.paths.runtime_dir)

    def _path(self, name: str) -> Path:
        return self.runtime_dir / name

    def _check(self, command: List[str]) -> None:
        result = self.runner(command, timeout=self.settings.engine.command_timeout)
        if result.returncode != 0:
            raise CommandFailed(command, describe_failure(result))

    def _nat_rules(self, interface: str, uplink: str) -> List[List[str]]:
        return [
            ["-t", "nat", "POSTROUTING", "-o", uplink, "-j", "MASQUERADE"],
            ["FORWARD", "-i", uplink, "-o", interface, "-m", "state", "--state", "RELATED,ESTABLISHED", "-j", "ACCEPT"],
            ["FORWARD", "-i", interface, "-o", uplink, "-j", "ACCEPT"],
        ]

    @staticmethod
    def _iptables(action: str, rule: List[str]) -> List[str]:
        if rule[0] == "-t":
            return ["iptables", rule[0], rule[1], action, *rule[2:]]
        return ["iptables", action, *rule]

    def create(self, config: HotspotConfig) -> str:
        config.validate()
        if not self.inventory.check_connectivity():
            raise HotspotError("No internet connection available for hotspot")
        uplink = self.inventory.internet_interface()
        if not uplink:
            raise HotspotError("No internet interface found")
        if uplink == config.interface:
            raise HotspotError(f"{config.interface} carries the internet connection")
        try:
            current = self.inventory.backends.current_connection(config.interface)
        except NetworkError as exc:
            logger.debug("link query for %s failed: %s", config.interface, exc)
            current = None
        if current is not None:
            raise HotspotError("WiFi interface is currently connected to a network")

        hostapd_conf = self._path("hostapd.conf")
        dnsmasq_conf = self._path("dnsmasq.conf")
        _write_text(hostapd_conf, render_hostapd_conf(config), mode=0o600)
        _write_text(dnsmasq_conf, render_dnsmasq_conf(config))

        self._check(["ip", "link", "set", config.interface, "down"])
        self._check(["ip", "addr", "flush", "dev", config.interface])
        self._check(["ip", "addr", "add", f"{config.gateway}/24", "dev", config.interface])
        self._check(["ip", "link", "set", config.interface, "up"])
        self._check(["dnsmasq", f"--conf-file={dnsmasq_conf}", f"--pid-file={self._path('dnsmasq.pid')}"])
        self._check(["sysctl", "-w", "net.ipv4.ip_forward=1"])
        for rule in self._nat_rules(config.interface, uplink):
            self._check(self._iptables("-A", rule))
        try:
            self._check(["hostapd", "-B", "-P", str(self._path("hostapd.pid")), str(hostapd_conf)])
        except CommandFailed as exc:
            self.stop(config.interface, uplink)
            raise HotspotError(f"hostapd failed to start: {exc.details}") from exc
        _write_text(self._path("hotspot.state"), f"{config.interface} {uplink}\n")
        logger.info("hotspot %s up on %s via %s", config.ssid, config.interface, uplink)
        return uplink

    def stop(self, interface: str | None = None, uplink: str | None = None) -> None:
        """Best-effort teardown; every step is attempted even when earlier ones fail."""
        state = self._path("hotspot.state")
        if (interface is None or uplink is None) and state.exists():
            saved = state.read_text(encoding="utf-8").split()
            if len(saved) == 2:
                interface, uplink = interface or saved[0], uplink or saved[1]
        for daemon in ("hostapd", "dnsmasq"):
            pid_file = self._path(f"{daemon}.pid")
            if pid_file.exists():
                result = self.runner(["pkill", "-F", str(pid_file)])
            else:
                result = self.runner(["pkill", daemon])
            if result.returncode not in (0, 1):
                logger.warning("stopping %s: %s", daemon, describe_failure(result))
        if interface and uplink:
            for rule in self._nat_rules(interface, uplink):
                result = self.runner(self._iptables("-D", rule))
                if result.returncode != 0:
                    logger.info("removing NAT rule: %s", describe_failure(result))
        if interface:
            self.runner(["ip", "addr", "flush", "dev", interface])
        for name in ("hotspot.state", "hostapd.pid", "dnsmasq.pid"):
            try:
                self._path(name).unlink()
            except FileNotFoundError:
                continue

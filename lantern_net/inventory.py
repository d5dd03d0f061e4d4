from __future__ import annotations

import dataclasses
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence

from lantern_net.backends import BackendChain
from lantern_net.core import Settings
from lantern_net.errors import CommandFailed, InterfaceNotFound, NetworkError
from lantern_net.models import DetailedWifiInfo, Interface, InterfaceStats, Ipv6Info, LinkDetails, WifiInfo
from lantern_net.parsers import (
    frequency_to_channel,
    parse_default_route_device,
    parse_ip_addr_json,
    parse_ip_route_json,
    parse_ip_route_text,
    parse_iw_dev_info,
    parse_iw_link_details,
    parse_iwconfig_details,
    parse_resolv_conf,
    parse_resolvectl_dns,
    signal_to_quality,
)
from lantern_net.system import Runner, _read_text, _run, describe_failure, is_wireless, read_counter


logger = logging.getLogger(__name__)

STAT_FIELDS = ("rx_bytes", "tx_bytes", "rx_packets", "tx_packets", "rx_errors", "tx_errors", "rx_dropped", "tx_dropped")


class InterfaceInventory:
    """Owner of the current interface snapshot.

    The collect_* and discover methods only read the system and return new
    values; install* replace the owned snapshot and are meant to be called
    from the owning thread.
    """

    def __init__(self, settings: Settings, backends: BackendChain, runner: Runner = _run) -> None:
        self.settings = settings
        self.backends = backends
        self.runner = runner
        self._interfaces: List[Interface] = []
        self._lock = threading.Lock()

    @property
    def sysfs_root(self) -> Path:
        return Path(self.settings.paths.sysfs_net)

    def snapshot(self) -> List[Interface]:
        with self._lock:
            return list(self._interfaces)

    def get(self, name: str) -> Interface:
        for interface in self.snapshot():
            if interface.name == name:
                return interface
        raise InterfaceNotFound(name)

    def install(self, interfaces: Iterable[Interface]) -> None:
        # Discovery does not query links; keep the last known WiFi state.
        with self._lock:
            previous = {interface.name: interface for interface in self._interfaces}
            merged = []
            for interface in interfaces:
                old = previous.get(interface.name)
                if old is not None and interface.wifi_info is not None and old.wifi_info is not None:
                    interface = dataclasses.replace(interface, wifi_info=old.wifi_info)
                merged.append(interface)
            self._interfaces = merged

    def install_stats(self, stats: Mapping[str, InterfaceStats]) -> None:
        with self._lock:
            self._interfaces = [
                dataclasses.replace(interface, stats=stats[interface.name]) if interface.name in stats else interface
                for interface in self._interfaces
            ]

    def install_wifi_info(self, infos: Mapping[str, WifiInfo]) -> None:
        with self._lock:
            self._interfaces = [
                dataclasses.replace(interface, wifi_info=infos[interface.name])
                if interface.name in infos and interface.wifi_info is not None
                else interface
                for interface in self._interfaces
            ]

    def _ip(self, *args: str) -> str:
        command = ["ip", *args]
        result = self.runner(command, timeout=self.settings.engine.command_timeout)
        if result.returncode != 0:
            raise CommandFailed(command, describe_failure(result))
        return result.stdout

    def discover(self) -> List[Interface]:
        """Full pass over the host's interfaces; per-interface failures degrade to defaults."""
        records = parse_ip_addr_json(self._ip("-j", "addr", "show"))
        resolvectl = self._resolvectl_status()
        discovered: List[Interface] = []
        for record in records:
            name = record.name
            discovered.append(
                dataclasses.replace(
                    record,
                    gateway=self._guard(name, "gateway", lambda: self.default_gateway(name), None),
                    ipv6_gateway=self._guard(name, "ipv6 gateway", lambda: self.ipv6_gateway(name), None),
                    dns_servers=tuple(self._guard(name, "dns", lambda: self.dns_servers(name, resolvectl), [])),
                    stats=self.read_stats(name),
                    wifi_info=WifiInfo() if is_wireless(self.sysfs_root, name) else None,
                    ipv6_info=self._guard(name, "ipv6 settings", lambda: self.ipv6_info(name), None),
                )
            )
        return discovered

    def _guard(self, interface: str, what: str, query: Callable[[], Any], default: Any) -> Any:
        try:
            return query()
        except (NetworkError, OSError) as exc:
            logger.debug("%s lookup for %s failed: %s", what, interface, exc)
            return default

    def default_gateway(self, interface: str) -> str | None:
        return parse_ip_route_json(self._ip("-j", "route", "show", "default", "dev", interface))

    def ipv6_gateway(self, interface: str) -> str | None:
        return parse_ip_route_text(self._ip("-6", "route", "show", "default", "dev", interface))

    def _resolvectl_status(self) -> str | None:
        result = self.runner(["resolvectl", "status"], timeout=self.settings.engine.command_timeout)
        if result.returncode != 0:
            logger.debug("resolvectl unavailable: %s", describe_failure(result))
            return None
        return result.stdout

    def dns_servers(self, interface: str, resolvectl: str | None = None) -> List[str]:
        if resolvectl:
            servers = parse_resolvectl_dns(resolvectl, interface)
            if servers:
                return servers
        return parse_resolv_conf(_read_text(Path(self.settings.paths.resolv_conf)))

    def read_stats(self, interface: str) -> InterfaceStats:
        base = self.sysfs_root / interface / "statistics"
        return InterfaceStats(**{name: read_counter(base / name) for name in STAT_FIELDS})

    def collect_stats(self, names: Sequence[str]) -> Dict[str, InterfaceStats]:
        return {name: self.read_stats(name) for name in names}

    def ipv6_info(self, interface: str) -> Ipv6Info:
        base = Path(self.settings.paths.procfs_ipv6) / interface
        accept_ra = _read_text(base / "accept_ra").strip()
        tempaddr = _read_text(base / "use_tempaddr").strip()
        dhcpcd = self.runner(["systemctl", "is-active", "--quiet", "dhcpcd"], timeout=self.settings.engine.command_timeout)
        return Ipv6Info(
            accept_ra=accept_ra != "0",
            privacy_extensions=tempaddr not in ("", "0", "-1"),
            dhcpv6_active=dhcpcd.returncode == 0,
        )

    def collect_wifi_info(self, interfaces: Sequence[Interface]) -> Dict[str, WifiInfo]:
        infos: Dict[str, WifiInfo] = {}
        for interface in interfaces:
            if interface.wifi_info is None:
                continue
            if not interface.is_up:
                infos[interface.name] = WifiInfo()
                continue
            try:
                network = self.backends.current_connection(interface.name)
            except NetworkError as exc:
                logger.debug("wifi link query for %s failed: %s", interface.name, exc)
                continue
            if network is None:
                infos[interface.name] = WifiInfo()
                continue
            infos[interface.name] = WifiInfo(
                current_network=network,
                signal_strength=network.signal_strength,
                frequency=network.frequency or None,
                channel=network.channel or None,
            )
        return infos

    def _link_details(self, interface: str) -> LinkDetails:
        command = ["iw", "dev", interface, "link"]
        result = self.runner(command, timeout=self.settings.engine.command_timeout)
        if result.returncode == 0 and "Not connected" not in result.stdout:
            details = parse_iw_link_details(result.stdout)
            station = self.runner(["iw", "dev", interface, "station", "dump"], timeout=self.settings.engine.command_timeout)
            if station.returncode == 0:
                extra = parse_iw_link_details(station.stdout)
                details = dataclasses.replace(
                    details,
                    tx_retries=extra.tx_retries,
                    tx_failed=extra.tx_failed,
                    connected_time=extra.connected_time,
                )
            return details
        fallback = self.runner(["iwconfig", interface], timeout=self.settings.engine.command_timeout)
        if fallback.returncode == 0:
            return parse_iwconfig_details(fallback.stdout)
        return LinkDetails()

    def _connected_seconds(self, interface: str) -> int | None:
        try:
            modified = (self.sysfs_root / interface / "operstate").stat().st_mtime
        except OSError:
            return None
        return max(0, int(time.time() - modified))

    def detailed_wifi_info(self, interface: str) -> DetailedWifiInfo | None:
        """Diagnostics for one interface, gathered only on request."""
        network = self.backends.current_connection(interface)
        if network is None:
            return None
        details = self._link_details(interface)
        info = self.runner(["iw", "dev", interface, "info"], timeout=self.settings.engine.command_timeout)
        tx_power = details.tx_power
        if tx_power is None and info.returncode == 0:
            tx_power = parse_iw_dev_info(info.stdout).get("tx_power")
        stats = self.read_stats(interface)
        signal = network.signal_strength or details.signal_strength or 0
        frequency = network.frequency or details.frequency or 0
        quality = details.signal_quality
        if quality is None:
            quality = signal_to_quality(signal) if signal else 0
        return DetailedWifiInfo(
            interface=interface,
            ssid=network.ssid,
            bssid=network.bssid or details.bssid or "",
            signal_strength=signal,
            signal_quality=quality,
            frequency=frequency,
            channel=network.channel or frequency_to_channel(frequency),
            tx_power=tx_power,
            link_speed=details.link_speed,
            security=network.security,
            encryption=network.encryption,
            connected_time=details.connected_time if details.connected_time is not None else self._connected_seconds(interface),
            rx_bytes=stats.rx_bytes,
            tx_bytes=stats.tx_bytes,
            rx_packets=stats.rx_packets,
            tx_packets=stats.tx_packets,
            rx_errors=stats.rx_errors,
            tx_errors=stats.tx_errors,
            rx_dropped=stats.rx_dropped,
            tx_dropped=stats.tx_dropped,
            tx_retries=details.tx_retries,
        )

    def set_state(self, interface: str, up: bool) -> None:
        if not (self.sysfs_root / interface).exists():
            raise InterfaceNotFound(interface)
        self._ip("link", "set", interface, "up" if up else "down")

    def add_address(self, interface: str, address: str) -> None:
        self._ip("addr", "add", address, "dev", interface)

    def remove_address(self, interface: str, address: str) -> None:
        self._ip("addr", "del", address, "dev", interface)

    def internet_interface(self) -> str | None:
        try:
            return parse_default_route_device(self._ip("route", "show", "default"))
        except NetworkError as exc:
            logger.debug("default route lookup failed: %s", exc)
            return None

    def check_connectivity(self, target: str = "8.8.8.8") -> bool:
        result = self.runner(["ping", "-c", "1", "-W", "3", target], timeout=10)
        return result.returncode == 0

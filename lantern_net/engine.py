from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Mapping, Sequence

from lantern_net.autoconnect import AutoConnectEngine, AutoConnectOutcome
from lantern_net.backends import BackendChain, build_backends
from lantern_net.core import Settings, WifiProfile
from lantern_net.errors import InterfaceNotFound, InvalidConfig, NetworkError
from lantern_net.inventory import InterfaceInventory
from lantern_net.models import (
    Addressing,
    DetailedWifiInfo,
    EnterpriseCredentials,
    Interface,
    InterfaceStats,
    WifiCredentials,
    WifiInfo,
    WifiNetwork,
    WifiSecurity,
)
from lantern_net.networkd import NetworkdWriter
from lantern_net.profiles import ProfileStore
from lantern_net.scheduler import Scheduler
from lantern_net.system import Runner, _run, is_likely_wifi_name


logger = logging.getLogger(__name__)


@dataclass
class ConnectRequest:
    ssid: str
    interface: str | None = None
    password: str | None = None
    security: WifiSecurity = WifiSecurity.WPA2
    hidden: bool = False
    dhcp: bool = True
    ip: str | None = None
    gateway: str | None = None
    dns: List[str] = field(default_factory=list)
    enterprise: EnterpriseCredentials | None = None

    def credentials(self) -> WifiCredentials:
        return WifiCredentials(
            ssid=self.ssid,
            password=self.password,
            security=self.security,
            hidden=self.hidden,
            enterprise=self.enterprise,
        )

    def addressing(self) -> Addressing:
        return Addressing(dhcp=self.dhcp, ip=self.ip, gateway=self.gateway, dns=tuple(self.dns))


def resolve_wifi_interface(interfaces: Sequence[Interface], selected: str | None = None) -> str:
    """Pick the interface a WiFi action should target."""
    if selected:
        for interface in interfaces:
            if interface.name == selected and (interface.is_wireless or is_likely_wifi_name(interface.name)):
                return interface.name
    for interface in interfaces:
        if interface.is_wireless:
            return interface.name
    for interface in interfaces:
        if is_likely_wifi_name(interface.name):
            return interface.name
    raise InterfaceNotFound(selected or "wireless interface")


class NetworkEngine:
    def __init__(
        self,
        settings: Settings,
        runner: Runner = _run,
        store: ProfileStore | None = None,
        backends: BackendChain | None = None,
        writer: NetworkdWriter | None = None,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.writer = writer or NetworkdWriter(settings, runner)
        self.backends = backends or build_backends(settings, self.writer, runner)
        self.inventory = InterfaceInventory(settings, self.backends, runner)
        self.store = store or ProfileStore.load(settings.paths.profiles)
        self.autoconnect = AutoConnectEngine(self.backends, after_connect=self._apply_profile_addressing)
        self.scheduler: Scheduler | None = None
        self._lock = threading.RLock()

    def interfaces(self) -> List[Interface]:
        return self.inventory.snapshot()

    def refresh(self) -> List[Interface]:
        interfaces = self.inventory.discover()
        wifi = self.inventory.collect_wifi_info(interfaces)
        with self._lock:
            self.inventory.install(interfaces)
            self.inventory.install_wifi_info(wifi)
        return self.inventory.snapshot()

    def _interfaces_or_refresh(self) -> List[Interface]:
        interfaces = self.inventory.snapshot()
        if not interfaces:
            interfaces = self.refresh()
        return interfaces

    def wifi_interface(self, selected: str | None = None) -> str:
        return resolve_wifi_interface(self._interfaces_or_refresh(), selected)

    def scan(self, interface: str | None = None) -> List[WifiNetwork]:
        device = self.wifi_interface(interface)
        networks = self.backends.scan(device)
        with self._lock:
            return self.store.annotate_history(networks, device)

    def _save_store(self) -> None:
        if not self.store.save():
            logger.warning("profile changes were not persisted")

    def _apply_addressing(self, device: str, addressing: Addressing) -> None:
        try:
            self.writer.apply_addressing(
                device,
                dhcp=addressing.dhcp,
                ip=addressing.ip,
                gateway=addressing.gateway,
                dns=addressing.dns,
                wireless=True,
            )
        except (NetworkError, OSError) as exc:
            logger.warning("could not write network configuration for %s: %s", device, exc)

    def _apply_profile_addressing(self, device: str, profile: WifiProfile) -> None:
        self._apply_addressing(device, Addressing(profile.dhcp, profile.ip, profile.gateway, tuple(profile.dns)))

    def connect(self, request: ConnectRequest) -> WifiProfile:
        device = self.wifi_interface(request.interface)
        backend = self.backends.connect(device, request.credentials(), request.addressing())
        if not backend.manages_addressing:
            self._apply_addressing(device, request.addressing())
        with self._lock:
            existing = self.store.get(request.ssid, device)
            profile = WifiProfile(
                ssid=request.ssid,
                interface=device,
                password=request.password,
                security=request.security,
                hidden=request.hidden,
                dhcp=request.dhcp,
                ip=request.ip,
                gateway=request.gateway,
                dns=list(request.dns),
                last_connected=datetime.now(timezone.utc),
                auto_connect=existing.auto_connect if existing else False,
                priority=existing.priority if existing else 0,
                enterprise=request.enterprise,
            )
            self.store.add(profile)
            self._save_store()
        self._refresh_quietly()
        logger.info("connected %s to %s via %s", device, request.ssid, backend.name)
        return profile

    def disconnect(self, interface: str | None = None) -> None:
        device = self.wifi_interface(interface)
        self.backends.disconnect(device)
        self._refresh_quietly()

    def set_power(self, interface: str | None, powered: bool) -> None:
        device = self.wifi_interface(interface)
        self.backends.set_power(device, powered)
        self._refresh_quietly()

    def _refresh_quietly(self) -> None:
        try:
            self.refresh()
        except NetworkError as exc:
            logger.warning("interface refresh failed: %s", exc)

    def profiles(self) -> List[WifiProfile]:
        with self._lock:
            return self.store.rank_for_auto_connect()

    def toggle_auto_connect(self, ssid: str, interface: str | None = None) -> bool:
        device = interface or self.wifi_interface()
        with self._lock:
            enabled = self.store.toggle_auto_connect(ssid, device)
            if enabled is None:
                raise InvalidConfig(f"no saved profile for {ssid} on {device}")
            self._save_store()
        return enabled

    def set_auto_connect(self, ssid: str, interface: str | None, enabled: bool) -> None:
        device = interface or self.wifi_interface()
        with self._lock:
            if not self.store.set_auto_connect(ssid, device, enabled):
                raise InvalidConfig(f"no saved profile for {ssid} on {device}")
            self._save_store()

    def set_priority(self, ssid: str, interface: str | None, priority: int) -> None:
        device = interface or self.wifi_interface()
        with self._lock:
            if not self.store.set_priority(ssid, device, priority):
                raise InvalidConfig(f"no saved profile for {ssid} on {device}")
            self._save_store()

    def forget(self, ssid: str, interface: str | None = None) -> bool:
        device = interface or self.wifi_interface()
        with self._lock:
            removed = self.store.remove(ssid, device)
            if removed:
                self._save_store()
        return removed

    def detailed_wifi_info(self, interface: str | None = None) -> DetailedWifiInfo | None:
        return self.inventory.detailed_wifi_info(self.wifi_interface(interface))

    def _auto_connect_inputs(self) -> tuple:
        with self._lock:
            return self.inventory.snapshot(), self.store.rank_for_auto_connect()

    def run_auto_connect(self, inputs: tuple) -> AutoConnectOutcome:
        interfaces, ranked = inputs
        return self.autoconnect.run_cycle(interfaces, ranked)

    def record_auto_connect(self, outcome: AutoConnectOutcome) -> None:
        if outcome.connected is None:
            return
        ssid, interface = outcome.connected
        with self._lock:
            if self.store.mark_connected(ssid, interface, outcome.connected_at):
                self._save_store()

    def _install_interfaces(self, interfaces: List[Interface]) -> None:
        with self._lock:
            self.inventory.install(interfaces)

    def _install_stats(self, stats: Mapping[str, InterfaceStats]) -> None:
        with self._lock:
            self.inventory.install_stats(stats)

    def _install_wifi(self, infos: Mapping[str, WifiInfo]) -> None:
        with self._lock:
            self.inventory.install_wifi_info(infos)

    def start(self) -> Scheduler:
        engine = self.settings.engine
        scheduler = Scheduler(max_workers=engine.max_workers)
        scheduler.add(
            "discovery",
            engine.discovery_interval,
            compute=lambda _: self.inventory.discover(),
            apply=self._install_interfaces,
        )
        scheduler.add(
            "stats",
            engine.stats_interval,
            compute=self.inventory.collect_stats,
            apply=self._install_stats,
            capture=lambda: [interface.name for interface in self.inventory.snapshot()],
            initial_delay=engine.stats_interval,
        )
        scheduler.add(
            "wifi-info",
            engine.wifi_info_interval,
            compute=self.inventory.collect_wifi_info,
            apply=self._install_wifi,
            capture=self.inventory.snapshot,
            initial_delay=1.0,
        )
        scheduler.add(
            "auto-connect",
            engine.auto_connect_interval,
            compute=self.run_auto_connect,
            apply=self.record_auto_connect,
            capture=self._auto_connect_inputs,
            initial_delay=engine.wifi_info_interval,
        )
        self.scheduler = scheduler
        return scheduler

    def run_forever(self, stop: threading.Event) -> None:
        scheduler = self.scheduler or self.start()
        logger.info("engine started")
        try:
            scheduler.run_until(stop)
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown()
            self.scheduler = None
        logger.info("engine stopped")

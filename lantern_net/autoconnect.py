from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Sequence, Tuple

from lantern_net.backends import BackendChain
from lantern_net.core import WifiProfile
from lantern_net.errors import NetworkError
from lantern_net.models import Addressing, Interface, WifiCredentials


logger = logging.getLogger(__name__)


class AutoConnectState(enum.Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"


@dataclass
class AutoConnectOutcome:
    interface: str | None = None
    attempted: List[str] = field(default_factory=list)
    connected: Tuple[str, str] | None = None
    connected_at: datetime | None = None
    skipped: str | None = None


def credentials_for(profile: WifiProfile) -> WifiCredentials:
    return WifiCredentials(
        ssid=profile.ssid,
        password=profile.password,
        security=profile.security,
        hidden=profile.hidden,
        enterprise=profile.enterprise,
    )


def addressing_for(profile: WifiProfile) -> Addressing:
    return Addressing(dhcp=profile.dhcp, ip=profile.ip, gateway=profile.gateway, dns=tuple(profile.dns))


class AutoConnectEngine:
    """Connects an idle wireless interface to the best visible remembered network.

    It never pre-empts an existing connection and never raises; the outcome
    is handed back so the profile owner can record the connection time.
    """

    def __init__(
        self,
        backends: BackendChain,
        after_connect: Callable[[str, WifiProfile], None] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.backends = backends
        self.after_connect = after_connect
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.state = AutoConnectState.IDLE

    def run_cycle(self, interfaces: Sequence[Interface], ranked: Sequence[WifiProfile]) -> AutoConnectOutcome:
        for interface in interfaces:
            if interface.wifi_info is not None and interface.wifi_info.current_network is not None:
                return AutoConnectOutcome(interface=interface.name, skipped="already connected")

        wireless = next((interface for interface in interfaces if interface.wifi_info is not None), None)
        if wireless is None:
            return AutoConnectOutcome(skipped="no wireless interface")

        candidates = [profile for profile in ranked if profile.auto_connect and profile.interface == wireless.name]
        if not candidates:
            return AutoConnectOutcome(interface=wireless.name, skipped="no auto-connect profiles")

        self.state = AutoConnectState.ATTEMPTING
        try:
            return self._attempt(wireless.name, candidates)
        finally:
            self.state = AutoConnectState.IDLE

    def _attempt(self, device: str, candidates: Sequence[WifiProfile]) -> AutoConnectOutcome:
        outcome = AutoConnectOutcome(interface=device)
        try:
            visible = {network.ssid for network in self.backends.scan(device)}
        except NetworkError as exc:
            logger.warning("auto-connect scan on %s failed: %s", device, exc)
            outcome.skipped = "scan failed"
            return outcome

        for profile in candidates:
            if profile.ssid not in visible:
                continue
            outcome.attempted.append(profile.ssid)
            logger.info("auto-connecting %s to %s", device, profile.ssid)
            try:
                backend = self.backends.connect(device, credentials_for(profile), addressing_for(profile))
            except NetworkError as exc:
                logger.warning("auto-connect to %s failed: %s", profile.ssid, exc)
                continue
            if self.after_connect is not None and not backend.manages_addressing:
                self.after_connect(device, profile)
            outcome.connected = profile.key
            outcome.connected_at = self.clock()
            logger.info("auto-connected %s to %s", device, profile.ssid)
            return outcome
        if not outcome.attempted:
            outcome.skipped = "no remembered network in range"
        return outcome

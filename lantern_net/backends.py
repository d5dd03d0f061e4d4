from __future__ import annotations

import abc
import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Sequence, Tuple, TypeVar

from lantern_net.core import Settings
from lantern_net.errors import (
    CommandFailed,
    EnterpriseWiFiError,
    NetworkError,
    ResourceUnavailable,
    WiFiError,
)
from lantern_net.models import Addressing, WifiCredentials, WifiDevice, WifiNetwork, WifiSecurity
from lantern_net.networkd import NetworkdWriter
from lantern_net.parsers import (
    iwctl_station_network,
    parse_iw_dev,
    parse_iw_link,
    parse_iw_scan,
    parse_iwctl_devices,
    parse_iwctl_networks,
    parse_iwctl_station,
)
from lantern_net.system import CommandResult, Runner, _read_text, _run, describe_failure


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Exit codes produced by _run when the tool could not be launched or finished.
_LAUNCH_FAILURES = {124, 126, 127}


class WifiBackend(abc.ABC):
    """Capability contract shared by every wireless control tool."""

    name = "backend"
    manages_addressing = False

    def __init__(self, settings: Settings, runner: Runner = _run, sleep: Callable[[float], None] = time.sleep) -> None:
        self.settings = settings
        self.runner = runner
        self.sleep = sleep

    def _call(self, command: List[str], timeout: float | None = None) -> CommandResult:
        result = self.runner(command, timeout=timeout or self.settings.engine.command_timeout)
        if result.returncode != 0:
            raise CommandFailed(command, describe_failure(result))
        return result

    def probe(self) -> List[WifiDevice]:
        devices = self.list_devices()
        if not devices:
            raise ResourceUnavailable(f"{self.name}: no wireless devices")
        return devices

    @abc.abstractmethod
    def list_devices(self) -> List[WifiDevice]:
        raise NotImplementedError

    @abc.abstractmethod
    def scan(self, device: str) -> List[WifiNetwork]:
        raise NotImplementedError

    @abc.abstractmethod
    def current_connection(self, device: str) -> WifiNetwork | None:
        raise NotImplementedError

    @abc.abstractmethod
    def connect(self, device: str, credentials: WifiCredentials, addressing: Addressing) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def disconnect(self, device: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def set_power(self, device: str, powered: bool) -> None:
        raise NotImplementedError


class IwdBackend(WifiBackend):
    name = "iwd"

    def list_devices(self) -> List[WifiDevice]:
        return parse_iwctl_devices(self._call(["iwctl", "device", "list"]).stdout)

    def scan(self, device: str) -> List[WifiNetwork]:
        self._call(["iwctl", "station", device, "scan"], timeout=self.settings.engine.scan_timeout)
        if self.settings.engine.scan_wait > 0:
            self.sleep(self.settings.engine.scan_wait)
        result = self._call(["iwctl", "station", device, "get-networks"])
        return parse_iwctl_networks(result.stdout)

    def current_connection(self, device: str) -> WifiNetwork | None:
        result = self._call(["iwctl", "station", device, "show"])
        return iwctl_station_network(parse_iwctl_station(result.stdout))

    def connect(self, device: str, credentials: WifiCredentials, addressing: Addressing) -> None:
        if credentials.enterprise is not None or credentials.security is WifiSecurity.ENTERPRISE:
            raise EnterpriseWiFiError("iwctl cannot provision 802.1X credentials")
        verb = "connect-hidden" if credentials.hidden else "connect"
        command = ["iwctl"]
        if credentials.password and credentials.security is not WifiSecurity.OPEN:
            command.extend(["--passphrase", credentials.password])
        command.extend(["station", device, verb, credentials.ssid])
        result = self.runner(command, timeout=self.settings.engine.connect_timeout)
        if result.returncode in _LAUNCH_FAILURES:
            raise CommandFailed(["iwctl", "station", device, verb, credentials.ssid], describe_failure(result))
        if result.returncode != 0:
            raise WiFiError(f"could not connect to {credentials.ssid}: {describe_failure(result)}")

    def disconnect(self, device: str) -> None:
        self._call(["iwctl", "station", device, "disconnect"])

    def set_power(self, device: str, powered: bool) -> None:
        self._call(["iwctl", "device", device, "set-property", "Powered", "on" if powered else "off"])


class LegacyBackend(WifiBackend):
    """`iw` for discovery and wpa_supplicant + systemd-networkd for connections."""

    name = "legacy"
    manages_addressing = True

    def __init__(
        self,
        settings: Settings,
        writer: NetworkdWriter,
        runner: Runner = _run,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(settings, runner, sleep)
        self.writer = writer

    def _link_up(self, device: str) -> bool:
        flags = _read_text(Path(self.settings.paths.sysfs_net) / device / "flags").strip()
        try:
            return bool(int(flags, 16) & 0x1)
        except ValueError:
            return True

    def list_devices(self) -> List[WifiDevice]:
        names = parse_iw_dev(self._call(["iw", "dev"]).stdout)
        return [WifiDevice(name=name, powered=self._link_up(name)) for name in names]

    def scan(self, device: str) -> List[WifiNetwork]:
        command = ["iw", "dev", device, "scan"]
        result = self.runner(command, timeout=self.settings.engine.scan_timeout)
        if result.returncode != 0 and "busy" in result.stdout.lower():
            self.sleep(self.settings.engine.scan_wait)
            result = self.runner(command, timeout=self.settings.engine.scan_timeout)
        if result.returncode != 0:
            raise CommandFailed(command, describe_failure(result))
        return parse_iw_scan(result.stdout)

    def current_connection(self, device: str) -> WifiNetwork | None:
        return parse_iw_link(self._call(["iw", "dev", device, "link"]).stdout)

    def _bounce(self, device: str) -> None:
        self._call(["ip", "link", "set", device, "down"])
        self.sleep(1)
        self._call(["ip", "link", "set", device, "up"])

    def connect(self, device: str, credentials: WifiCredentials, addressing: Addressing) -> None:
        self.writer.apply_wifi_secrets(device, credentials)
        self.writer.apply_addressing(
            device,
            dhcp=addressing.dhcp,
            ip=addressing.ip,
            gateway=addressing.gateway,
            dns=addressing.dns,
            wireless=True,
        )
        self._bounce(device)

    def disconnect(self, device: str) -> None:
        self.writer.teardown(device)
        self._call(["ip", "link", "set", device, "down"])

    def set_power(self, device: str, powered: bool) -> None:
        self._call(["ip", "link", "set", device, "up" if powered else "down"])


class BackendChain:
    """Dispatches each operation to the live backend, falling back in priority order.

    The first backend whose probe answers is cached. A failure on the cached
    backend clears the cache and the remaining backends are probed and tried in
    order; the first to succeed becomes the live backend.
    """

    def __init__(self, backends: Sequence[WifiBackend]) -> None:
        if not backends:
            raise ValueError("at least one backend is required")
        self.backends = list(backends)
        self._live: WifiBackend | None = None
        self._lock = threading.Lock()

    @property
    def live(self) -> WifiBackend | None:
        with self._lock:
            return self._live

    def _set_live(self, backend: WifiBackend | None) -> None:
        with self._lock:
            self._live = backend

    def invalidate(self) -> None:
        self._set_live(None)

    def available(self) -> List[str]:
        names = []
        for backend in self.backends:
            try:
                backend.probe()
            except NetworkError:
                continue
            names.append(backend.name)
        return names

    def dispatch(self, operation: str, call: Callable[[WifiBackend], T]) -> Tuple[T, WifiBackend]:
        live = self.live
        candidates = ([live] if live else []) + [backend for backend in self.backends if backend is not live]
        unavailable: List[str] = []
        last_error: NetworkError | None = None
        for backend in candidates:
            if backend is not live:
                try:
                    backend.probe()
                except NetworkError as exc:
                    logger.info("%s backend unavailable: %s", backend.name, exc)
                    unavailable.append(f"{backend.name}: {exc}")
                    continue
            try:
                result = call(backend)
            except NetworkError as exc:
                logger.info("%s via %s backend failed: %s", operation, backend.name, exc)
                last_error = exc
                if backend is live:
                    self.invalidate()
                continue
            if backend is not live:
                logger.info("using %s backend", backend.name)
                self._set_live(backend)
            return result, backend
        if last_error is not None:
            raise last_error
        raise ResourceUnavailable("wireless backend (" + "; ".join(unavailable) + ")")

    def list_devices(self) -> List[WifiDevice]:
        return self.dispatch("list devices", lambda backend: backend.list_devices())[0]

    def scan(self, device: str) -> List[WifiNetwork]:
        return self.dispatch(f"scan on {device}", lambda backend: backend.scan(device))[0]

    def current_connection(self, device: str) -> WifiNetwork | None:
        return self.dispatch(f"link query on {device}", lambda backend: backend.current_connection(device))[0]

    def connect(self, device: str, credentials: WifiCredentials, addressing: Addressing) -> WifiBackend:
        _, backend = self.dispatch(
            f"connect {credentials.ssid} on {device}",
            lambda backend: backend.connect(device, credentials, addressing),
        )
        return backend

    def disconnect(self, device: str) -> WifiBackend:
        return self.dispatch(f"disconnect {device}", lambda backend: backend.disconnect(device))[1]

    def set_power(self, device: str, powered: bool) -> WifiBackend:
        return self.dispatch(f"power {device}", lambda backend: backend.set_power(device, powered))[1]


def build_backends(settings: Settings, writer: NetworkdWriter, runner: Runner = _run) -> BackendChain:
    known = {
        "iwd": lambda: IwdBackend(settings, runner),
        "legacy": lambda: LegacyBackend(settings, writer, runner),
    }
    backends: List[WifiBackend] = []
    for name in settings.engine.backends:
        factory = known.get(name)
        if factory is None:
            logger.warning("ignoring unknown backend %r", name)
            continue
        backends.append(factory())
    if not backends:
        backends = [IwdBackend(settings, runner), LegacyBackend(settings, writer, runner)]
    return BackendChain(backends)

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
import tempfile
try:
    import tomllib
except ModuleNotFoundError:  # Python < 3.11
    import tomli as tomllib
from typing import Any, Dict, List

import tomli_w

from lantern_net.models import EnterpriseCredentials, WifiSecurity


DEFAULT_CONFIG_PATH = Path("/etc/lantern/lantern.toml")
DEFAULT_PROFILES_PATH = Path("/var/lib/lantern/profiles.toml")
CONFIG_PATH_ENV = "LANTERN_CONFIG_PATH"


def _float(data: Dict[str, Any], key: str, default: float) -> float:
    try:
        return float(data.get(key, default))
    except (TypeError, ValueError):
        return default


@dataclass
class EngineSettings:
    backends: List[str] = field(default_factory=lambda: ["iwd", "legacy"])
    stats_interval: float = 1.0
    discovery_interval: float = 5.0
    wifi_info_interval: float = 10.0
    auto_connect_interval: float = 30.0
    command_timeout: float = 30.0
    scan_timeout: float = 20.0
    connect_timeout: float = 45.0
    scan_wait: float = 2.0
    country_code: str = "US"
    max_workers: int = 4

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backends": list(self.backends),
            "stats_interval": self.stats_interval,
            "discovery_interval": self.discovery_interval,
            "wifi_info_interval": self.wifi_info_interval,
            "auto_connect_interval": self.auto_connect_interval,
            "command_timeout": self.command_timeout,
            "scan_timeout": self.scan_timeout,
            "connect_timeout": self.connect_timeout,
            "scan_wait": self.scan_wait,
            "country_code": self.country_code,
            "max_workers": self.max_workers,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineSettings":
        defaults = cls()
        backends = [str(item).lower() for item in data.get("backends", defaults.backends) if str(item).strip()]
        try:
            max_workers = max(1, int(data.get("max_workers", defaults.max_workers)))
        except (TypeError, ValueError):
            max_workers = defaults.max_workers
        return cls(
            backends=backends or defaults.backends,
            stats_interval=_float(data, "stats_interval", defaults.stats_interval),
            discovery_interval=_float(data, "discovery_interval", defaults.discovery_interval),
            wifi_info_interval=_float(data, "wifi_info_interval", defaults.wifi_info_interval),
            auto_connect_interval=_float(data, "auto_connect_interval", defaults.auto_connect_interval),
            command_timeout=_float(data, "command_timeout", defaults.command_timeout),
            scan_timeout=_float(data, "scan_timeout", defaults.scan_timeout),
            connect_timeout=_float(data, "connect_timeout", defaults.connect_timeout),
            scan_wait=_float(data, "scan_wait", defaults.scan_wait),
            country_code=str(data.get("country_code", defaults.country_code)).upper(),
            max_workers=max_workers,
        )


@dataclass
class PathSettings:
    profiles: Path = DEFAULT_PROFILES_PATH
    networkd_dir: Path = Path("/etc/systemd/network")
    wpa_supplicant_dir: Path = Path("/etc/wpa_supplicant")
    runtime_dir: Path = Path("/run/lantern")
    sysfs_net: Path = Path("/sys/class/net")
    procfs_ipv6: Path = Path("/proc/sys/net/ipv6/conf")
    resolv_conf: Path = Path("/etc/resolv.conf")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profiles": str(self.profiles),
            "networkd_dir": str(self.networkd_dir),
            "wpa_supplicant_dir": str(self.wpa_supplicant_dir),
            "runtime_dir": str(self.runtime_dir),
            "sysfs_net": str(self.sysfs_net),
            "procfs_ipv6": str(self.procfs_ipv6),
            "resolv_conf": str(self.resolv_conf),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PathSettings":
        defaults = cls()
        values = {}
        for key, default in defaults.to_dict().items():
            values[key] = Path(str(data.get(key) or default))
        return cls(**values)


@dataclass
class LoggingSettings:
    level: str = "INFO"
    file: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level, "file": self.file}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingSettings":
        return cls(level=str(data.get("level", "INFO")).upper(), file=str(data.get("file", "")))


@dataclass
class Settings:
    engine: EngineSettings = field(default_factory=EngineSettings)
    paths: PathSettings = field(default_factory=PathSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engine": self.engine.to_dict(),
            "paths": self.paths.to_dict(),
            "logging": self.logging.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        return cls(
            engine=EngineSettings.from_dict(data.get("engine", {})),
            paths=PathSettings.from_dict(data.get("paths", {})),
            logging=LoggingSettings.from_dict(data.get("logging", {})),
        )


def _utc(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


@dataclass
class WifiProfile:
    ssid: str
    interface: str
    password: str | None = None
    security: WifiSecurity = WifiSecurity.WPA2
    hidden: bool = False
    dhcp: bool = True
    ip: str | None = None
    gateway: str | None = None
    dns: List[str] = field(default_factory=list)
    last_connected: datetime | None = None
    auto_connect: bool = False
    priority: int = 0
    enterprise: EnterpriseCredentials | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.ssid, self.interface)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ssid": self.ssid,
            "interface": self.interface,
            "security": self.security.value,
            "hidden": self.hidden,
            "dhcp": self.dhcp,
            "auto_connect": self.auto_connect,
            "priority": self.priority,
        }
        if self.password:
            payload["password"] = self.password
        if self.ip:
            payload["ip"] = self.ip
        if self.gateway:
            payload["gateway"] = self.gateway
        if self.dns:
            payload["dns"] = list(self.dns)
        if self.last_connected is not None:
            payload["last_connected"] = self.last_connected
        if self.enterprise is not None:
            payload["enterprise"] = self.enterprise.to_dict()
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WifiProfile":
        try:
            priority = int(data.get("priority", 0))
        except (TypeError, ValueError):
            priority = 0
        enterprise = data.get("enterprise")
        return cls(
            ssid=str(data.get("ssid", "")),
            interface=str(data.get("interface", "")),
            password=str(data["password"]) if data.get("password") else None,
            security=WifiSecurity.parse(data.get("security")),
            hidden=bool(data.get("hidden", False)),
            dhcp=bool(data.get("dhcp", True)),
            ip=str(data["ip"]) if data.get("ip") else None,
            gateway=str(data["gateway"]) if data.get("gateway") else None,
            dns=[str(item) for item in data.get("dns", []) if item],
            last_connected=_utc(data.get("last_connected")),
            auto_connect=bool(data.get("auto_connect", False)),
            priority=priority,
            enterprise=EnterpriseCredentials.from_dict(enterprise) if isinstance(enterprise, dict) else None,
        )


@dataclass
class InterfaceProfile:
    name: str
    interface: str
    dhcp: bool = True
    ip: str | None = None
    gateway: str | None = None
    dns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "interface": self.interface, "dhcp": self.dhcp}
        if self.ip:
            payload["ip"] = self.ip
        if self.gateway:
            payload["gateway"] = self.gateway
        if self.dns:
            payload["dns"] = list(self.dns)
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InterfaceProfile":
        return cls(
            name=str(data.get("name", "")),
            interface=str(data.get("interface", "")),
            dhcp=bool(data.get("dhcp", True)),
            ip=str(data["ip"]) if data.get("ip") else None,
            gateway=str(data["gateway"]) if data.get("gateway") else None,
            dns=[str(item) for item in data.get("dns", []) if item],
        )


@dataclass
class ProfileDocument:
    wifi_profiles: List[WifiProfile] = field(default_factory=list)
    profiles: List[InterfaceProfile] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.wifi_profiles:
            payload["wifi_profiles"] = [profile.to_dict() for profile in self.wifi_profiles]
        if self.profiles:
            payload["profiles"] = [profile.to_dict() for profile in self.profiles]
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileDocument":
        return cls(
            wifi_profiles=[WifiProfile.from_dict(item) for item in data.get("wifi_profiles", []) if isinstance(item, dict)],
            profiles=[InterfaceProfile.from_dict(item) for item in data.get("profiles", []) if isinstance(item, dict)],
        )


def resolve_config_path(path: Path | str | None = None) -> Path:
    if path:
        return Path(path)
    return Path(os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def _load_toml(path: Path) -> Dict[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _write_atomic(path: Path, content: str) -> bool:
    if path.exists():
        existing = path.read_text(encoding="utf-8")
        if existing == content:
            return False
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding="utf-8") as handle:
        handle.write(content)
        temp_name = handle.name
    Path(temp_name).replace(path)
    return True


def load_settings(path: Path | str | None = None) -> Settings:
    path = resolve_config_path(path)
    if not path.exists():
        return Settings()
    return Settings.from_dict(_load_toml(path))


def save_settings(settings: Settings, path: Path | str | None = None) -> bool:
    return _write_atomic(resolve_config_path(path), settings_to_toml(settings))


def settings_to_toml(settings: Settings) -> str:
    return tomli_w.dumps(settings.to_dict())


def load_profiles(path: Path) -> ProfileDocument:
    path = Path(path)
    if not path.exists():
        return ProfileDocument()
    return ProfileDocument.from_dict(_load_toml(path))


def save_profiles(document: ProfileDocument, path: Path) -> bool:
    return _write_atomic(Path(path), tomli_w.dumps(document.to_dict()))

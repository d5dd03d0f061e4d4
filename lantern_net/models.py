from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple


class OperState(enum.Enum):
    UP = "UP"
    DOWN = "DOWN"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str | None) -> "OperState":
        normalized = str(value or "").strip().upper()
        if normalized == "UP":
            return cls.UP
        if normalized == "DOWN":
            return cls.DOWN
        return cls.UNKNOWN


class WifiSecurity(enum.Enum):
    OPEN = "Open"
    WEP = "WEP"
    WPA = "WPA"
    WPA2 = "WPA2"
    WPA3 = "WPA3"
    ENTERPRISE = "Enterprise"

    @property
    def rank(self) -> int:
        return _SECURITY_RANK[self]

    @classmethod
    def parse(cls, value: str | None) -> "WifiSecurity":
        """Map a stored or user-supplied label to a security kind, WPA2 when unknown."""
        normalized = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == normalized or member.name.lower() == normalized:
                return member
        return cls.WPA2


_SECURITY_RANK = {
    WifiSecurity.OPEN: 0,
    WifiSecurity.WEP: 1,
    WifiSecurity.WPA: 2,
    WifiSecurity.WPA2: 3,
    WifiSecurity.WPA3: 4,
    WifiSecurity.ENTERPRISE: 5,
}


class Ipv6Scope(enum.Enum):
    GLOBAL = "Global"
    LINK_LOCAL = "LinkLocal"
    SITE_LOCAL = "SiteLocal"
    UNIQUE_LOCAL = "UniqueLocal"
    LOOPBACK = "Loopback"
    UNKNOWN = "Unknown"


class EnterpriseAuthMethod(enum.Enum):
    PEAP = "PEAP"
    TTLS = "TTLS"
    TLS = "TLS"
    PWD = "PWD"
    LEAP = "LEAP"


class Phase2Auth(enum.Enum):
    MSCHAPV2 = "MSCHAPV2"
    PAP = "PAP"
    CHAP = "CHAP"
    GTC = "GTC"
    MD5 = "MD5"


@dataclass(frozen=True)
class InterfaceStats:
    rx_bytes: int = 0
    tx_bytes: int = 0
    rx_packets: int = 0
    tx_packets: int = 0
    rx_errors: int = 0
    tx_errors: int = 0
    rx_dropped: int = 0
    tx_dropped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rx_bytes": self.rx_bytes,
            "tx_bytes": self.tx_bytes,
            "rx_packets": self.rx_packets,
            "tx_packets": self.tx_packets,
            "rx_errors": self.rx_errors,
            "tx_errors": self.tx_errors,
            "rx_dropped": self.rx_dropped,
            "tx_dropped": self.tx_dropped,
        }


@dataclass(frozen=True)
class Ipv6Address:
    address: str
    prefix_length: int
    scope: Ipv6Scope = Ipv6Scope.UNKNOWN
    flags: Tuple[str, ...] = ()
    preferred_lifetime: int | None = None
    valid_lifetime: int | None = None

    @property
    def cidr(self) -> str:
        return f"{self.address}/{self.prefix_length}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "prefix_length": self.prefix_length,
            "scope": self.scope.value,
            "flags": list(self.flags),
            "preferred_lifetime": self.preferred_lifetime,
            "valid_lifetime": self.valid_lifetime,
        }


@dataclass(frozen=True)
class Ipv6Info:
    accept_ra: bool = True
    privacy_extensions: bool = False
    dhcpv6_active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accept_ra": self.accept_ra,
            "privacy_extensions": self.privacy_extensions,
            "dhcpv6_active": self.dhcpv6_active,
        }


@dataclass(frozen=True)
class WifiNetwork:
    ssid: str
    bssid: str = ""
    signal_strength: int = 0
    frequency: int = 0
    channel: int = 0
    security: WifiSecurity = WifiSecurity.OPEN
    encryption: Tuple[str, ...] = ()
    connected: bool = False
    in_history: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ssid": self.ssid,
            "bssid": self.bssid,
            "signal_strength": self.signal_strength,
            "frequency": self.frequency,
            "channel": self.channel,
            "security": self.security.value,
            "encryption": list(self.encryption),
            "connected": self.connected,
            "in_history": self.in_history,
        }


@dataclass(frozen=True)
class WifiInfo:
    current_network: WifiNetwork | None = None
    signal_strength: int | None = None
    frequency: int | None = None
    channel: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_network": self.current_network.to_dict() if self.current_network else None,
            "signal_strength": self.signal_strength,
            "frequency": self.frequency,
            "channel": self.channel,
        }


@dataclass(frozen=True)
class Interface:
    name: str
    mac_address: str = ""
    state: OperState = OperState.UNKNOWN
    mtu: int = 1500
    ipv4_addresses: Tuple[str, ...] = ()
    ipv6_addresses: Tuple[Ipv6Address, ...] = ()
    gateway: str | None = None
    ipv6_gateway: str | None = None
    dns_servers: Tuple[str, ...] = ()
    stats: InterfaceStats = field(default_factory=InterfaceStats)
    wifi_info: WifiInfo | None = None
    ipv6_info: Ipv6Info | None = None

    @property
    def is_wireless(self) -> bool:
        return self.wifi_info is not None

    @property
    def is_up(self) -> bool:
        return self.state is OperState.UP

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "mac_address": self.mac_address,
            "state": self.state.value,
            "mtu": self.mtu,
            "ipv4_addresses": list(self.ipv4_addresses),
            "ipv6_addresses": [address.to_dict() for address in self.ipv6_addresses],
            "gateway": self.gateway,
            "ipv6_gateway": self.ipv6_gateway,
            "dns_servers": list(self.dns_servers),
            "stats": self.stats.to_dict(),
            "is_wireless": self.is_wireless,
            "wifi_info": self.wifi_info.to_dict() if self.wifi_info else None,
            "ipv6_info": self.ipv6_info.to_dict() if self.ipv6_info else None,
        }


@dataclass(frozen=True)
class WifiDevice:
    name: str
    powered: bool = True
    address: str = ""
    adapter: str = ""


@dataclass(frozen=True)
class LinkDetails:
    """Link parameters read from `iw dev <if> link` or `iwconfig`."""

    link_speed: int | None = None
    tx_power: int | None = None
    signal_quality: int | None = None
    signal_strength: int | None = None
    frequency: int | None = None
    bssid: str | None = None
    ssid: str | None = None
    rx_bytes: int | None = None
    tx_bytes: int | None = None
    rx_packets: int | None = None
    tx_packets: int | None = None
    tx_retries: int | None = None
    tx_failed: int | None = None
    connected_time: int | None = None


@dataclass(frozen=True)
class DetailedWifiInfo:
    interface: str
    ssid: str = ""
    bssid: str = ""
    signal_strength: int = 0
    signal_quality: int = 0
    frequency: int = 0
    channel: int = 0
    tx_power: int | None = None
    link_speed: int | None = None
    security: WifiSecurity = WifiSecurity.WPA2
    encryption: Tuple[str, ...] = ()
    connected_time: int | None = None
    rx_bytes: int = 0
    tx_bytes: int = 0
    rx_packets: int = 0
    tx_packets: int = 0
    rx_errors: int = 0
    tx_errors: int = 0
    rx_dropped: int = 0
    tx_dropped: int = 0
    tx_retries: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interface": self.interface,
            "ssid": self.ssid,
            "bssid": self.bssid,
            "signal_strength": self.signal_strength,
            "signal_quality": self.signal_quality,
            "frequency": self.frequency,
            "channel": self.channel,
            "tx_power": self.tx_power,
            "link_speed": self.link_speed,
            "security": self.security.value,
            "encryption": list(self.encryption),
            "connected_time": self.connected_time,
            "rx_bytes": self.rx_bytes,
            "tx_bytes": self.tx_bytes,
            "rx_packets": self.rx_packets,
            "tx_packets": self.tx_packets,
            "rx_errors": self.rx_errors,
            "tx_errors": self.tx_errors,
            "rx_dropped": self.rx_dropped,
            "tx_dropped": self.tx_dropped,
            "tx_retries": self.tx_retries,
        }


@dataclass
class EnterpriseCredentials:
    auth_method: EnterpriseAuthMethod = EnterpriseAuthMethod.PEAP
    username: str = ""
    password: str | None = None
    identity: str | None = None
    ca_cert: str | None = None
    client_cert: str | None = None
    private_key: str | None = None
    private_key_password: str | None = None
    phase2_auth: Phase2Auth | None = None

    def __post_init__(self) -> None:
        if self.auth_method not in (EnterpriseAuthMethod.PEAP, EnterpriseAuthMethod.TTLS):
            self.phase2_auth = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "auth_method": self.auth_method.value,
            "username": self.username,
        }
        for key in ("password", "identity", "ca_cert", "client_cert", "private_key", "private_key_password"):
            value = getattr(self, key)
            if value:
                payload[key] = value
        if self.phase2_auth is not None:
            payload["phase2_auth"] = self.phase2_auth.value
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnterpriseCredentials":
        try:
            method = EnterpriseAuthMethod(str(data.get("auth_method", "PEAP")).upper())
        except ValueError:
            method = EnterpriseAuthMethod.PEAP
        phase2 = None
        if data.get("phase2_auth"):
            try:
                phase2 = Phase2Auth(str(data["phase2_auth"]).upper())
            except ValueError:
                phase2 = None

        def _opt(key: str) -> str | None:
            value = data.get(key)
            return str(value) if value else None

        return cls(
            auth_method=method,
            username=str(data.get("username", "")),
            password=_opt("password"),
            identity=_opt("identity"),
            ca_cert=_opt("ca_cert"),
            client_cert=_opt("client_cert"),
            private_key=_opt("private_key"),
            private_key_password=_opt("private_key_password"),
            phase2_auth=phase2,
        )


@dataclass(frozen=True)
class WifiCredentials:
    ssid: str
    password: str | None = None
    security: WifiSecurity = WifiSecurity.WPA2
    hidden: bool = False
    enterprise: EnterpriseCredentials | None = None


@dataclass(frozen=True)
class Addressing:
    dhcp: bool = True
    ip: str | None = None
    gateway: str | None = None
    dns: Tuple[str, ...] = ()

"""Best-effort parsers for the text and JSON emitted by the network tools.

Every parser here is a pure function over captured output. Malformed input
never raises: unparseable numbers fall back to zero, undecodable JSON yields
an empty result and incomplete records are dropped.
"""
from __future__ import annotations

import ipaddress
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from lantern_net.models import (
    Interface,
    Ipv6Address,
    Ipv6Scope,
    LinkDetails,
    OperState,
    WifiDevice,
    WifiNetwork,
    WifiSecurity,
)


logger = logging.getLogger(__name__)

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
IWD_DIM_STARS = re.compile(r"(\*+)\x1b\[[0-9;]*m\*")
RESOLVECTL_KEY = re.compile(r"^([A-Za-z][A-Za-z0-9 .+/-]*?):(\s|$)")

IWD_SECURITY = {
    "open": WifiSecurity.OPEN,
    "wep": WifiSecurity.WEP,
    "psk": WifiSecurity.WPA2,
    "8021x": WifiSecurity.ENTERPRISE,
    "sae": WifiSecurity.WPA3,
}

# iwd draws four signal stars; thresholds follow its -60/-67/-75 dBm bands.
IWD_STARS_TO_DBM = {4: -55, 3: -64, 2: -71, 1: -80, 0: -90}


def _to_int(value: str | None, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def frequency_to_channel(frequency: int | float) -> int:
    freq = int(frequency or 0)
    if freq == 2484:
        return 14
    if 2412 <= freq < 2484:
        return (freq - 2407) // 5
    if 5000 <= freq <= 5899:
        return (freq - 5000) // 5
    if freq == 5935:
        return 2
    if 5955 <= freq <= 7115:
        return (freq - 5950) // 5
    return 0


def signal_to_quality(signal_dbm: int) -> int:
    """Linear mapping of -90..-30 dBm onto 0..100 percent."""
    quality = (int(signal_dbm) + 90) * 100 // 60
    return max(0, min(100, quality))


def upgrade_security(current: WifiSecurity, candidate: WifiSecurity) -> WifiSecurity:
    return candidate if candidate.rank > current.rank else current


def classify_security(markers: Iterable[str]) -> WifiSecurity:
    security = WifiSecurity.OPEN
    for marker in markers:
        for candidate in _security_markers(marker):
            security = upgrade_security(security, candidate)
    return security


def _security_markers(text: str) -> List[WifiSecurity]:
    found: List[WifiSecurity] = []
    upper = text.upper()
    if "802.1X" in upper or "EAP" in upper or "ENTERPRISE" in upper:
        found.append(WifiSecurity.ENTERPRISE)
    if "SAE" in upper or "WPA3" in upper:
        found.append(WifiSecurity.WPA3)
    if upper.startswith("RSN") or "WPA2" in upper:
        found.append(WifiSecurity.WPA2)
    if upper.startswith("WPA:") or re.search(r"\bWPA\b", upper):
        found.append(WifiSecurity.WPA)
    if "PRIVACY" in upper or "WEP" in upper:
        found.append(WifiSecurity.WEP)
    return found


def iwd_security(value: str | None) -> WifiSecurity:
    return IWD_SECURITY.get(str(value or "").strip().lower(), WifiSecurity.WPA2)


def sort_and_dedupe(networks: Iterable[WifiNetwork]) -> List[WifiNetwork]:
    ordered = sorted(networks, key=lambda network: network.signal_strength, reverse=True)
    seen: set[str] = set()
    unique: List[WifiNetwork] = []
    for network in ordered:
        if network.ssid in seen:
            continue
        seen.add(network.ssid)
        unique.append(network)
    return unique


@dataclass
class _ScanRecord:
    bssid: str = ""
    ssid: str = ""
    signal: int | None = None
    frequency: int = 0
    connected: bool = False
    security: WifiSecurity = WifiSecurity.OPEN
    encryption: List[str] = field(default_factory=list)

    def mark(self, line: str) -> None:
        for candidate in _security_markers(line):
            self.security = upgrade_security(self.security, candidate)
            if candidate.value not in self.encryption:
                self.encryption.append(candidate.value)


def parse_iw_scan(output: str) -> List[WifiNetwork]:
    networks: List[WifiNetwork] = []
    current: _ScanRecord | None = None

    def commit() -> None:
        nonlocal current
        if current is None:
            return
        if current.ssid and current.signal is not None:
            networks.append(
                WifiNetwork(
                    ssid=current.ssid,
                    bssid=current.bssid,
                    signal_strength=current.signal,
                    frequency=current.frequency,
                    channel=frequency_to_channel(current.frequency),
                    security=current.security,
                    encryption=tuple(current.encryption),
                    connected=current.connected,
                )
            )
        current = None

    for raw in output.splitlines():
        line = raw.strip()
        if raw.startswith("BSS "):
            commit()
            parts = line.split()
            bssid = parts[1].split("(", 1)[0] if len(parts) > 1 else ""
            current = _ScanRecord(bssid=bssid, connected="-- associated" in line)
            continue
        if current is None:
            continue
        if line.startswith("SSID:"):
            current.ssid = line.split("SSID:", 1)[1].strip()
        elif line.startswith("signal:"):
            tokens = line.split("signal:", 1)[1].split()
            current.signal = _to_int(tokens[0] if tokens else None)
        elif line.startswith("freq:"):
            current.frequency = _to_int(line.split("freq:", 1)[1])
        elif line.startswith("capability:"):
            if "Privacy" in line:
                current.mark("Privacy")
        elif line.startswith("RSN:"):
            current.mark("RSN:")
        elif line.startswith("WPA:"):
            current.mark("WPA:")
        elif "Authentication suites:" in line:
            current.mark(line.split("Authentication suites:", 1)[1])

    commit()
    return sort_and_dedupe(networks)


def parse_iw_link(output: str) -> WifiNetwork | None:
    if not output.strip() or "Not connected" in output:
        return None
    details = parse_iw_link_details(output)
    if not details.ssid:
        return None
    frequency = details.frequency or 0
    return WifiNetwork(
        ssid=details.ssid,
        bssid=details.bssid or "",
        signal_strength=details.signal_strength or 0,
        frequency=frequency,
        channel=frequency_to_channel(frequency),
        security=WifiSecurity.WPA2,
        connected=True,
    )


def _bytes_packets(text: str) -> tuple[int, int]:
    match = re.search(r"(\d+)\s*bytes\s*\((\d+)\s*packets\)", text)
    if not match:
        return 0, 0
    return int(match.group(1)), int(match.group(2))


def parse_iw_link_details(output: str) -> LinkDetails:
    """Read `iw dev <if> link` (or `station dump`) into link details."""
    values: Dict[str, Any] = {}
    for raw in output.splitlines():
        line = raw.strip()
        if line.startswith("Connected to"):
            parts = line.split()
            if len(parts) >= 3:
                values["bssid"] = parts[2]
        elif line.startswith("Station "):
            parts = line.split()
            if len(parts) >= 2:
                values["bssid"] = parts[1]
        elif line.startswith("SSID:"):
            values["ssid"] = line.split("SSID:", 1)[1].strip()
        elif line.startswith("freq:"):
            values["frequency"] = _to_int(line.split("freq:", 1)[1])
        elif line.startswith("signal:"):
            tokens = line.split("signal:", 1)[1].split()
            signal = _to_int(tokens[0] if tokens else None)
            values["signal_strength"] = signal
            values["signal_quality"] = signal_to_quality(signal)
        elif line.startswith("tx bitrate:"):
            tokens = line.split()
            if len(tokens) >= 3:
                values["link_speed"] = _to_int(tokens[2])
        elif line.startswith("RX:"):
            values["rx_bytes"], values["rx_packets"] = _bytes_packets(line)
        elif line.startswith("TX:"):
            values["tx_bytes"], values["tx_packets"] = _bytes_packets(line)
        elif line.startswith("rx bytes:"):
            values["rx_bytes"] = _to_int(line.split(":", 1)[1])
        elif line.startswith("tx bytes:"):
            values["tx_bytes"] = _to_int(line.split(":", 1)[1])
        elif line.startswith("tx retries:"):
            values["tx_retries"] = _to_int(line.split(":", 1)[1])
        elif line.startswith("tx failed:"):
            values["tx_failed"] = _to_int(line.split(":", 1)[1])
        elif line.startswith("connected time:"):
            tokens = line.split(":", 1)[1].split()
            values["connected_time"] = _to_int(tokens[0] if tokens else None)
    return LinkDetails(**values)


def parse_iwconfig_details(output: str) -> LinkDetails:
    values: Dict[str, Any] = {}
    essid = re.search(r'ESSID:"([^"]*)"', output)
    if essid and essid.group(1):
        values["ssid"] = essid.group(1)
    access_point = re.search(r"Access Point: ([0-9A-Fa-f:]{17})", output)
    if access_point:
        values["bssid"] = access_point.group(1)
    frequency = re.search(r"Frequency[:=]([0-9.]+) GHz", output)
    if frequency:
        values["frequency"] = int(round(float(frequency.group(1)) * 1000))
    rate = re.search(r"Bit Rate[=:]([0-9.]+)", output)
    if rate:
        values["link_speed"] = _to_int(rate.group(1))
    power = re.search(r"Tx-Power[=:](-?[0-9]+)", output)
    if power:
        values["tx_power"] = _to_int(power.group(1))
    quality = re.search(r"Link Quality[=:](\d+)/(\d+)", output)
    if quality:
        numerator, denominator = int(quality.group(1)), int(quality.group(2))
        if denominator > 0:
            values["signal_quality"] = numerator * 100 // denominator
    level = re.search(r"Signal level[=:](-?[0-9]+) dBm", output)
    if level:
        values["signal_strength"] = _to_int(level.group(1))
    return LinkDetails(**values)


def parse_iw_dev(output: str) -> List[str]:
    names: List[str] = []
    for raw in output.splitlines():
        line = raw.strip()
        if line.startswith("Interface "):
            name = line.split(None, 1)[1].strip()
            if name and name not in names:
                names.append(name)
    return names


def parse_iw_dev_info(output: str) -> Dict[str, Any]:
    info: Dict[str, Any] = {}
    for raw in output.splitlines():
        line = raw.strip()
        if line.startswith("txpower "):
            info["tx_power"] = _to_int(line.split()[1])
        elif line.startswith("ssid "):
            info["ssid"] = line.split(None, 1)[1].strip()
        elif line.startswith("addr "):
            info["address"] = line.split()[1]
        elif line.startswith("wiphy "):
            info["wiphy"] = line.split()[1]
        elif line.startswith("type "):
            info["type"] = line.split()[1]
        elif line.startswith("channel "):
            match = re.search(r"\((\d+) MHz\)", line)
            if match:
                info["frequency"] = int(match.group(1))
    return info


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text)


def parse_iwctl_table(output: str) -> List[List[str]]:
    """Rows below the header of an iwctl table, split on runs of two or more spaces."""
    lines = output.splitlines()
    separators = [index for index, line in enumerate(lines) if strip_ansi(line).strip().startswith("----")]
    if len(separators) < 2:
        return []
    rows: List[List[str]] = []
    for raw in lines[separators[-1] + 1:]:
        line = strip_ansi(raw).strip()
        if not line:
            continue
        rows.append(re.split(r"\s{2,}", line))
    return rows


def parse_iwctl_devices(output: str) -> List[WifiDevice]:
    devices: List[WifiDevice] = []
    for row in parse_iwctl_table(output):
        if len(row) < 3 or row[0].lower() == "name":
            continue
        devices.append(
            WifiDevice(
                name=row[0],
                address=row[1],
                powered=row[2].lower() == "on",
                adapter=row[3] if len(row) > 3 else "",
            )
        )
    return devices


def _iwctl_stars(raw: str, cell: str) -> int:
    dim = IWD_DIM_STARS.search(raw)
    if dim:
        return len(dim.group(1))
    return min(4, cell.count("*"))


def parse_iwctl_networks(output: str) -> List[WifiNetwork]:
    lines = output.splitlines()
    separators = [index for index, line in enumerate(lines) if strip_ansi(line).strip().startswith("----")]
    if len(separators) < 2:
        return []
    networks: List[WifiNetwork] = []
    for raw in lines[separators[-1] + 1:]:
        line = strip_ansi(raw).strip()
        if not line:
            continue
        connected = line.startswith(">")
        if connected:
            line = line[1:].strip()
        columns = re.split(r"\s{2,}", line)
        if len(columns) < 2 or not columns[0]:
            continue
        security = iwd_security(columns[1])
        stars = _iwctl_stars(raw, columns[2]) if len(columns) > 2 else 0
        networks.append(
            WifiNetwork(
                ssid=columns[0],
                signal_strength=IWD_STARS_TO_DBM.get(stars, -90),
                security=security,
                encryption=(security.value,),
                connected=connected,
            )
        )
    return sort_and_dedupe(networks)


def parse_iwctl_station(output: str) -> Dict[str, str]:
    properties: Dict[str, str] = {}
    for row in parse_iwctl_table(output):
        if row and row[0] == "*":
            row = row[1:]
        if len(row) < 2 or row[0] in {"Settable", "Property"}:
            continue
        properties[row[0]] = " ".join(row[1:]).strip()
    return properties


def iwctl_station_network(properties: Dict[str, str]) -> WifiNetwork | None:
    if properties.get("State", "").lower() != "connected":
        return None
    ssid = properties.get("Connected network", "")
    if not ssid:
        return None
    frequency = _to_int(properties.get("Frequency"))
    rssi = properties.get("RSSI") or properties.get("AverageRSSI") or ""
    signal = _to_int(rssi.split()[0] if rssi.split() else None)
    security_label = properties.get("Security", "")
    security = classify_security([security_label]) if security_label else WifiSecurity.WPA2
    if security is WifiSecurity.OPEN and security_label.lower() not in {"open", "none"}:
        security = WifiSecurity.WPA2
    return WifiNetwork(
        ssid=ssid,
        bssid=properties.get("ConnectedBss", ""),
        signal_strength=signal,
        frequency=frequency,
        channel=frequency_to_channel(frequency),
        security=security,
        encryption=(security.value,),
        connected=True,
    )


def _load_json_list(output: str) -> List[Dict[str, Any]]:
    try:
        payload = json.loads(output or "[]")
    except ValueError:
        logger.debug("discarding undecodable ip -j output")
        return []
    if not isinstance(payload, list):
        return []
    return [entry for entry in payload if isinstance(entry, dict)]


def classify_ipv6_scope(address: str, scope: str | None) -> Ipv6Scope:
    try:
        parsed = ipaddress.IPv6Address(address.split("%", 1)[0])
    except ValueError:
        parsed = None
    if parsed is not None and parsed in ipaddress.IPv6Network("fc00::/7"):
        return Ipv6Scope.UNIQUE_LOCAL
    label = str(scope or "").lower()
    if label == "global":
        return Ipv6Scope.GLOBAL
    if label == "link":
        return Ipv6Scope.LINK_LOCAL
    if label == "site":
        return Ipv6Scope.SITE_LOCAL
    if label == "host":
        return Ipv6Scope.LOOPBACK
    return Ipv6Scope.UNKNOWN


def _lifetime(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, str) and value.lower() == "forever":
        return None
    return _to_int(str(value))


def parse_ipv6_addr_info(entry: Dict[str, Any]) -> Ipv6Address:
    address = str(entry.get("local", ""))
    flags = [
        flag
        for flag in ("temporary", "deprecated", "tentative", "dadfailed", "mngtmpaddr", "noprefixroute", "dynamic")
        if entry.get(flag)
    ]
    return Ipv6Address(
        address=address,
        prefix_length=_to_int(entry.get("prefixlen"), 64),
        scope=classify_ipv6_scope(address, entry.get("scope")),
        flags=tuple(flags),
        preferred_lifetime=_lifetime(entry.get("preferred_life_time")),
        valid_lifetime=_lifetime(entry.get("valid_life_time")),
    )


def parse_ip_addr_json(output: str) -> List[Interface]:
    """Partial interface records from `ip -j addr show`, loopback excluded."""
    interfaces: List[Interface] = []
    for entry in _load_json_list(output):
        name = str(entry.get("ifname") or "")
        if not name or name == "lo":
            continue
        ipv4: List[str] = []
        ipv6: List[Ipv6Address] = []
        for info in entry.get("addr_info") or []:
            if not isinstance(info, dict) or not info.get("local"):
                continue
            if info.get("family") == "inet":
                ipv4.append(f"{info['local']}/{_to_int(info.get('prefixlen'), 32)}")
            elif info.get("family") == "inet6":
                ipv6.append(parse_ipv6_addr_info(info))
        mtu = entry.get("mtu")
        interfaces.append(
            Interface(
                name=name,
                mac_address=str(entry.get("address") or ""),
                state=OperState.parse(entry.get("operstate")),
                mtu=_to_int(str(mtu), 1500) if mtu is not None else 1500,
                ipv4_addresses=tuple(ipv4),
                ipv6_addresses=tuple(ipv6),
            )
        )
    return interfaces


def parse_ip_route_json(output: str) -> str | None:
    for entry in _load_json_list(output):
        if entry.get("dst", "default") == "default" and entry.get("gateway"):
            return str(entry["gateway"])
    return None


def parse_ip_route_text(output: str) -> str | None:
    for raw in output.splitlines():
        tokens = raw.split()
        if not tokens or tokens[0] != "default":
            continue
        if "via" in tokens:
            index = tokens.index("via")
            if index + 1 < len(tokens):
                return tokens[index + 1]
    return None


def parse_default_route_device(output: str) -> str | None:
    for raw in output.splitlines():
        tokens = raw.split()
        if tokens and tokens[0] == "default" and "dev" in tokens:
            index = tokens.index("dev")
            if index + 1 < len(tokens):
                return tokens[index + 1]
    return None


def _dns_tokens(text: str) -> List[str]:
    servers: List[str] = []
    for token in text.split():
        candidate = token.split("#", 1)[0]
        try:
            ipaddress.ip_address(candidate.split("%", 1)[0])
        except ValueError:
            continue
        servers.append(candidate)
    return servers


def parse_resolvectl_dns(output: str, interface: str | None = None) -> List[str]:
    """DNS servers from `resolvectl status`: the link section first, then Global."""
    sections: Dict[str, List[str]] = {}
    section: str | None = None
    in_servers = False
    for raw in output.splitlines():
        if not raw.strip():
            in_servers = False
            continue
        if not raw[0].isspace():
            header = raw.strip()
            if header == "Global":
                section = "Global"
                in_servers = False
                continue
            match = re.match(r"^Link \d+ \(([^)]+)\)", header)
            if match:
                section = match.group(1)
                in_servers = False
                continue
        if section is None:
            continue
        line = raw.strip()
        key_match = RESOLVECTL_KEY.match(line)
        if key_match:
            key = key_match.group(1).strip()
            in_servers = key == "DNS Servers"
            if in_servers:
                sections.setdefault(section, []).extend(_dns_tokens(line.split(":", 1)[1]))
            continue
        if in_servers:
            sections.setdefault(section, []).extend(_dns_tokens(line))
    if interface and sections.get(interface):
        return _unique(sections[interface])
    return _unique(sections.get("Global", []))


def parse_resolv_conf(text: str) -> List[str]:
    servers: List[str] = []
    for raw in text.splitlines():
        tokens = raw.split()
        if len(tokens) >= 2 and tokens[0] == "nameserver":
            servers.extend(_dns_tokens(tokens[1]))
    return _unique(servers)


def _unique(values: Iterable[str]) -> List[str]:
    unique: List[str] = []
    for value in values:
        if value not in unique:
            unique.append(value)
    return unique

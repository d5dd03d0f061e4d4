from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List

from lantern_net.core import Settings
from lantern_net.errors import CommandFailed, InvalidConfig, ResourceUnavailable, WireGuardError
from lantern_net.system import Runner, _find_command, _read_text, _run, _write_text, describe_failure


logger = logging.getLogger(__name__)

DEFAULT_ROUTES = {"0.0.0.0/0", "::/0"}


@dataclass
class WireGuardPeer:
    public_key: str
    preshared_key: str | None = None
    endpoint: str | None = None
    allowed_ips: List[str] = field(default_factory=list)
    persistent_keepalive: int | None = None
    name: str | None = None


@dataclass
class WireGuardConfig:
    interface_name: str
    private_key: str = ""
    public_key: str = ""
    listen_port: int | None = None
    addresses: List[str] = field(default_factory=list)
    dns: List[str] = field(default_factory=list)
    mtu: int | None = None
    peers: List[WireGuardPeer] = field(default_factory=list)


@dataclass
class WireGuardPeerStatus:
    public_key: str
    endpoint: str | None = None
    allowed_ips: List[str] = field(default_factory=list)
    latest_handshake: datetime | None = None
    transfer_rx: int = 0
    transfer_tx: int = 0
    persistent_keepalive: int | None = None


@dataclass
class WireGuardStatus:
    interface: str
    public_key: str
    listen_port: int | None = None
    peers: List[WireGuardPeerStatus] = field(default_factory=list)

    @property
    def connected(self) -> bool:
        return any(peer.latest_handshake is not None for peer in self.peers)

    @property
    def last_handshake(self) -> datetime | None:
        handshakes = [peer.latest_handshake for peer in self.peers if peer.latest_handshake is not None]
        return max(handshakes) if handshakes else None


@dataclass
class WireGuardKeyPair:
    private_key: str
    public_key: str


def _optional_int(value: str) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def render_netdev(config: WireGuardConfig) -> str:
    if not config.private_key:
        raise InvalidConfig(f"{config.interface_name}: private key is required")
    lines = [
        "[NetDev]",
        f"Name={config.interface_name}",
        "Kind=wireguard",
        "Description=WireGuard tunnel",
        "",
        "[WireGuard]",
        f"PrivateKey={config.private_key}",
    ]
    if config.listen_port is not None:
        lines.append(f"ListenPort={config.listen_port}")
    for peer in config.peers:
        if not peer.public_key:
            raise InvalidConfig(f"{config.interface_name}: every peer needs a public key")
        lines.extend(["", "[WireGuardPeer]"])
        if peer.name:
            lines.append(f"# {peer.name}")
        lines.append(f"PublicKey={peer.public_key}")
        if peer.preshared_key:
            lines.append(f"PresharedKey={peer.preshared_key}")
        if peer.endpoint:
            lines.append(f"Endpoint={peer.endpoint}")
        for allowed in peer.allowed_ips:
            lines.append(f"AllowedIPs={allowed}")
        if peer.persistent_keepalive is not None:
            lines.append(f"PersistentKeepalive={peer.persistent_keepalive}")
    return "\n".join(lines) + "\n"


def render_network(config: WireGuardConfig) -> str:
    lines = ["[Match]", f"Name={config.interface_name}", "", "[Network]"]
    for address in config.addresses:
        lines.append(f"Address={address}")
    for server in config.dns:
        lines.append(f"DNS={server}")
    for peer in config.peers:
        for allowed in peer.allowed_ips:
            if allowed not in DEFAULT_ROUTES:
                lines.extend(["", "[Route]", f"Destination={allowed}"])
    lines.extend(["", "[Link]", "RequiredForOnline=no"])
    if config.mtu is not None:
        lines.append(f"MTUBytes={config.mtu}")
    return "\n".join(lines) + "\n"


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_config(content: str, interface_name: str) -> WireGuardConfig:
    """Parse a wg-quick file or a networkd .netdev/.network pair into a config."""
    config = WireGuardConfig(interface_name=interface_name)
    section = ""
    peer: WireGuardPeer | None = None

    def flush() -> None:
        nonlocal peer
        if peer is not None:
            config.peers.append(peer)
        peer = None

    for raw in content.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            if section in {"Peer", "WireGuardPeer"} and peer is not None and peer.name is None:
                peer.name = line.lstrip("#").strip() or None
            continue
        if line.startswith("[") and line.endswith("]"):
            flush()
            section = line[1:-1].strip()
            if section in {"Peer", "WireGuardPeer"}:
                peer = WireGuardPeer(public_key="")
            continue
        if "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        if section in {"Interface", "WireGuard", "Network", "NetDev", "Link"}:
            if key == "PrivateKey":
                config.private_key = value
            elif key == "ListenPort":
                config.listen_port = _optional_int(value)
            elif key == "Address":
                config.addresses.extend(_split_list(value))
            elif key == "DNS":
                config.dns.extend(_split_list(value))
            elif key in {"MTU", "MTUBytes"}:
                config.mtu = _optional_int(value)
        elif section in {"Peer", "WireGuardPeer"} and peer is not None:
            if key == "PublicKey":
                peer.public_key = value
            elif key == "PresharedKey":
                peer.preshared_key = value
            elif key == "Endpoint":
                peer.endpoint = value
            elif key == "AllowedIPs":
                peer.allowed_ips.extend(_split_list(value))
            elif key == "PersistentKeepalive":
                peer.persistent_keepalive = _optional_int(value)
    flush()
    return config


def parse_dump(output: str, interface_name: str) -> WireGuardStatus | None:
    """Parse `wg show <if> dump`: one interface line, then one line per peer."""
    lines = [line for line in output.splitlines() if line.strip()]
    if not lines:
        return None
    head = lines[0].split("\t")
    if len(head) < 3:
        return None
    status = WireGuardStatus(
        interface=interface_name,
        public_key=head[1],
        listen_port=_optional_int(head[2]) or None,
    )
    for line in lines[1:]:
        parts = line.split("\t")
        if len(parts) < 4:
            continue
        handshake = _optional_int(parts[4]) if len(parts) > 4 else None
        status.peers.append(
            WireGuardPeerStatus(
                public_key=parts[0],
                endpoint=parts[2] if parts[2] not in {"", "(none)"} else None,
                allowed_ips=_split_list(parts[3]) if parts[3] != "(none)" else [],
                latest_handshake=datetime.fromtimestamp(handshake, tz=timezone.utc) if handshake else None,
                transfer_rx=(_optional_int(parts[5]) or 0) if len(parts) > 5 else 0,
                transfer_tx=(_optional_int(parts[6]) or 0) if len(parts) > 6 else 0,
                persistent_keepalive=_optional_int(parts[7]) if len(parts) > 7 else None,
            )
        )
    return status


class WireGuardManager:
    def __init__(
        self,
        settings: Settings,
        runner: Runner = _run,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.sleep = sleep

    @property
    def network_dir(self) -> Path:
        return self.settings.paths.networkd_dir

    def _paths(self, interface_name: str) -> Dict[str, Path]:
        return {
            "netdev": self.network_dir / f"50-{interface_name}.netdev",
            "network": self.network_dir / f"50-{interface_name}.network",
        }

    def _require_wg(self) -> None:
        if _find_command("wg") is None:
            raise ResourceUnavailable("WireGuard tools (wg command not found)")

    def _ip_link(self, interface_name: str, state: str) -> None:
        command = ["ip", "link", "set", interface_name, state]
        result = self.runner(command)
        if result.returncode != 0:
            raise CommandFailed(command, describe_failure(result))

    def generate_keys(self) -> WireGuardKeyPair:
        self._require_wg()
        private = self.runner(["wg", "genkey"])
        if private.returncode != 0:
            raise WireGuardError(f"wg genkey failed: {describe_failure(private)}")
        private_key = private.stdout.strip()
        if not private_key:
            raise WireGuardError("wg genkey returned an empty key")
        return WireGuardKeyPair(private_key=private_key, public_key=self.public_key(private_key))

    def public_key(self, private_key: str) -> str:
        result = self.runner(["wg", "pubkey"], input_text=private_key + "\n")
        if result.returncode != 0:
            raise WireGuardError(f"wg pubkey failed: {describe_failure(result)}")
        public_key = result.stdout.strip()
        if not public_key:
            raise WireGuardError("wg pubkey returned an empty key")
        return public_key

    def write_config(self, config: WireGuardConfig) -> None:
        paths = self._paths(config.interface_name)
        _write_text(paths["netdev"], render_netdev(config), mode=0o640)
        _write_text(paths["network"], render_network(config))
        command = ["networkctl", "reload"]
        result = self.runner(command)
        if result.returncode != 0:
            raise CommandFailed(command, describe_failure(result))

    def create(self, config: WireGuardConfig) -> None:
        self.write_config(config)
        self._ip_link(config.interface_name, "up")
        logger.info("created WireGuard interface %s", config.interface_name)

    def import_file(self, path: Path, interface_name: str) -> WireGuardConfig:
        content = _read_text(Path(path))
        if not content:
            raise InvalidConfig(f"could not read WireGuard config {path}")
        config = parse_config(content, interface_name)
        if config.private_key and not config.public_key:
            config.public_key = self.public_key(config.private_key)
        self.create(config)
        return config

    def destroy(self, interface_name: str) -> None:
        self._ip_link(interface_name, "down")
        result = self.runner(["ip", "link", "delete", interface_name])
        if result.returncode != 0:
            logger.info("ip link delete %s: %s", interface_name, describe_failure(result))
        for path in self._paths(interface_name).values():
            try:
                path.unlink()
            except FileNotFoundError:
                continue
        self.runner(["networkctl", "reload"])

    def connect(self, interface_name: str) -> None:
        self._ip_link(interface_name, "up")
        self.sleep(1)

    def disconnect(self, interface_name: str) -> None:
        self._ip_link(interface_name, "down")

    def status(self, interface_name: str) -> WireGuardStatus | None:
        result = self.runner(["wg", "show", interface_name, "dump"])
        if result.returncode != 0:
            return None
        return parse_dump(result.stdout, interface_name)

    def list_interfaces(self) -> List[str]:
        result = self.runner(["wg", "show", "interfaces"])
        if result.returncode != 0:
            return []
        return result.stdout.split()

from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
from pathlib import Path

from lantern_net.core import InterfaceProfile, Settings, load_settings, resolve_config_path, save_settings, settings_to_toml
from lantern_net.engine import ConnectRequest, NetworkEngine
from lantern_net.errors import InvalidConfig, NetworkError
from lantern_net.hotspot import HotspotConfig, HotspotManager
from lantern_net.models import EnterpriseAuthMethod, EnterpriseCredentials, Interface, Phase2Auth, WifiSecurity
from lantern_net.networkd import Ipv6Config
from lantern_net.web import create_app
from lantern_net.wireguard import WireGuardManager


logger = logging.getLogger(__name__)


def format_bytes(count: int) -> str:
    value = float(count)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1024 or unit == "TB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def configure_logging(settings: Settings, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.logging.level, logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.logging.file:
        log_path = Path(settings.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="lantern")
    parser.add_argument("--config", type=Path, default=None, help="Path to the settings file.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Write a default settings file.")
    init_parser.add_argument("--force", action="store_true", help="Overwrite if exists.")
    subparsers.add_parser("show", help="Show the effective settings.")
    subparsers.add_parser("interfaces", help="List network interfaces.")
    subparsers.add_parser("daemon", help="Run the refresh and auto-connect loop.")
    web_parser = subparsers.add_parser("web", help="Serve the JSON API.")
    web_parser.add_argument("--host", default="127.0.0.1", help="Address to bind to.")
    web_parser.add_argument("--port", type=int, default=8080, help="Port to bind to.")

    iface_parser = subparsers.add_parser("interface", help="Inspect or configure one interface.")
    iface_sub = iface_parser.add_subparsers(dest="interface_command", required=True)
    for name in ("show", "up", "down"):
        sub = iface_sub.add_parser(name)
        sub.add_argument("name")
    configure = iface_sub.add_parser("configure", help="Write addressing for an interface.")
    configure.add_argument("name")
    configure.add_argument("--static", dest="ip", default=None, help="Static address in CIDR form.")
    configure.add_argument("--gateway", default=None)
    configure.add_argument("--dns", action="append", default=[])
    configure.add_argument("--profile", default=None, help="Save these settings under a profile name.")
    ipv6 = iface_sub.add_parser("ipv6", help="Write IPv6 settings for an interface.")
    ipv6.add_argument("name")
    ipv6.add_argument("--disable", action="store_true")
    ipv6.add_argument("--address", action="append", default=[], help="Static IPv6 address in CIDR form.")
    ipv6.add_argument("--gateway", default=None)
    ipv6.add_argument("--dns", action="append", default=[])
    ipv6.add_argument("--no-accept-ra", dest="accept_ra", action="store_false")
    ipv6.add_argument("--privacy", action="store_true", help="Enable privacy extensions.")
    ipv6.add_argument("--no-dhcpv6", dest="dhcpv6", action="store_false")

    wifi_parser = subparsers.add_parser("wifi", help="WiFi actions.")
    wifi_sub = wifi_parser.add_subparsers(dest="wifi_command", required=True)
    scan = wifi_sub.add_parser("scan", help="Scan for networks.")
    scan.add_argument("--interface", default=None)
    status = wifi_sub.add_parser("status", help="Show the current connection.")
    status.add_argument("--interface", default=None)
    details = wifi_sub.add_parser("details", help="Show link diagnostics.")
    details.add_argument("--interface", default=None)

    connect = wifi_sub.add_parser("connect", help="Connect to a network.")
    connect.add_argument("--ssid", required=True)
    connect.add_argument("--password", default=None)
    connect.add_argument("--interface", default=None)
    connect.add_argument("--security", default=None, choices=[member.value for member in WifiSecurity])
    connect.add_argument("--hidden", action="store_true")
    connect.add_argument("--static", dest="ip", default=None, help="Static address in CIDR form.")
    connect.add_argument("--gateway", default=None)
    connect.add_argument("--dns", action="append", default=[])
    connect.add_argument("--eap", default=None, choices=[member.value for member in EnterpriseAuthMethod])
    connect.add_argument("--username", default=None)
    connect.add_argument("--identity", default=None)
    connect.add_argument("--ca-cert", default=None)
    connect.add_argument("--client-cert", default=None)
    connect.add_argument("--private-key", default=None)
    connect.add_argument("--private-key-password", default=None)
    connect.add_argument("--phase2", default=None, choices=[member.value for member in Phase2Auth])

    disconnect = wifi_sub.add_parser("disconnect", help="Disconnect from the current network.")
    disconnect.add_argument("--interface", default=None)
    power = wifi_sub.add_parser("power", help="Power the radio on or off.")
    power.add_argument("state", choices=["on", "off"])
    power.add_argument("--interface", default=None)
    wifi_sub.add_parser("profiles", help="List remembered networks in auto-connect order.")
    forget = wifi_sub.add_parser("forget", help="Forget a remembered network.")
    forget.add_argument("--ssid", required=True)
    forget.add_argument("--interface", default=None)
    auto = wifi_sub.add_parser("auto-connect", help="Enable, disable or toggle auto-connect.")
    auto.add_argument("--ssid", required=True)
    auto.add_argument("--interface", default=None)
    auto_group = auto.add_mutually_exclusive_group()
    auto_group.add_argument("--enable", dest="enabled", action="store_const", const=True)
    auto_group.add_argument("--disable", dest="enabled", action="store_const", const=False)
    priority = wifi_sub.add_parser("priority", help="Set a profile priority.")
    priority.add_argument("--ssid", required=True)
    priority.add_argument("--interface", default=None)
    priority.add_argument("value", type=int)

    wg_parser = subparsers.add_parser("wireguard", help="WireGuard tunnels.")
    wg_sub = wg_parser.add_subparsers(dest="wireguard_command", required=True)
    wg_sub.add_parser("keygen", help="Generate a key pair.")
    wg_import = wg_sub.add_parser("import", help="Import a wg-quick file as a networkd tunnel.")
    wg_import.add_argument("path", type=Path)
    wg_import.add_argument("--name", required=True)
    for name in ("up", "down", "status", "remove"):
        sub = wg_sub.add_parser(name)
        sub.add_argument("name")
    wg_sub.add_parser("list", help="List WireGuard interfaces.")

    hotspot_parser = subparsers.add_parser("hotspot", help="WiFi hotspot.")
    hotspot_sub = hotspot_parser.add_subparsers(dest="hotspot_command", required=True)
    start = hotspot_sub.add_parser("start")
    start.add_argument("--ssid", required=True)
    start.add_argument("--password", required=True)
    start.add_argument("--interface", default=None)
    start.add_argument("--channel", type=int, default=6)
    start.add_argument("--gateway", default="192.168.4.1")
    hotspot_sub.add_parser("stop")

    return parser.parse_args(argv)


def _cmd_init(path: Path, force: bool) -> int:
    if path.exists() and not force:
        print(f"Settings already exist at {path}. Use --force to overwrite.")
        return 1
    save_settings(Settings(), path)
    print(f"Initialized settings at {path}.")
    return 0


def _cmd_show(settings: Settings) -> int:
    print(settings_to_toml(settings).rstrip())
    return 0


def _print_interface(interface: Interface) -> None:
    print(f"{interface.name}: {interface.state.value} mtu {interface.mtu} {interface.mac_address}")
    for address in interface.ipv4_addresses:
        print(f"    inet {address}")
    for address in interface.ipv6_addresses:
        print(f"    inet6 {address.cidr} ({address.scope.value})")
    if interface.gateway:
        print(f"    gateway {interface.gateway}")
    if interface.ipv6_gateway:
        print(f"    gateway6 {interface.ipv6_gateway}")
    if interface.dns_servers:
        print(f"    dns {' '.join(interface.dns_servers)}")
    stats = interface.stats
    print(f"    rx {format_bytes(stats.rx_bytes)} ({stats.rx_packets} packets)  tx {format_bytes(stats.tx_bytes)} ({stats.tx_packets} packets)")
    if interface.wifi_info is not None:
        network = interface.wifi_info.current_network
        if network is None:
            print("    wifi: not connected")
        else:
            print(f"    wifi: {network.ssid} {network.signal_strength} dBm ch {network.channel or '?'}")


def _cmd_interfaces(engine: NetworkEngine) -> int:
    interfaces = engine.refresh()
    if not interfaces:
        print("No interfaces found.")
        return 1
    for interface in interfaces:
        _print_interface(interface)
    return 0


def _cmd_interface(engine: NetworkEngine, args: argparse.Namespace) -> int:
    if args.interface_command == "show":
        engine.refresh()
        _print_interface(engine.inventory.get(args.name))
        return 0
    if args.interface_command in {"up", "down"}:
        engine.inventory.set_state(args.name, args.interface_command == "up")
        print(f"{args.name} is {args.interface_command}.")
        return 0
    if args.interface_command == "ipv6":
        config = Ipv6Config(
            enable_ipv6=not args.disable,
            addresses=list(args.address),
            gateway=args.gateway,
            dns_servers=list(args.dns),
            accept_ra=args.accept_ra,
            privacy_extensions=args.privacy,
            dhcpv6=args.dhcpv6,
        )
        print(f"Wrote {engine.writer.apply_ipv6(args.name, config)}.")
        return 0
    wireless = any(interface.name == args.name and interface.is_wireless for interface in engine.refresh())
    dhcp = args.ip is None
    if dhcp and (args.gateway or args.dns):
        raise InvalidConfig("--gateway and --dns require --static")
    path = engine.writer.apply_addressing(args.name, dhcp=dhcp, ip=args.ip, gateway=args.gateway, dns=args.dns, wireless=wireless)
    if args.profile:
        engine.store.add_interface_profile(
            InterfaceProfile(name=args.profile, interface=args.name, dhcp=dhcp, ip=args.ip, gateway=args.gateway, dns=list(args.dns))
        )
        engine.store.save()
    print(f"Wrote {path}.")
    return 0


def _enterprise_from_args(args: argparse.Namespace) -> EnterpriseCredentials | None:
    if not args.eap:
        return None
    return EnterpriseCredentials(
        auth_method=EnterpriseAuthMethod(args.eap),
        username=args.username or "",
        password=args.password,
        identity=args.identity,
        ca_cert=args.ca_cert,
        client_cert=args.client_cert,
        private_key=args.private_key,
        private_key_password=args.private_key_password,
        phase2_auth=Phase2Auth(args.phase2) if args.phase2 else None,
    )


def _cmd_wifi_connect(engine: NetworkEngine, args: argparse.Namespace) -> int:
    enterprise = _enterprise_from_args(args)
    if enterprise is not None:
        security = WifiSecurity.ENTERPRISE
    elif args.security:
        security = WifiSecurity.parse(args.security)
    else:
        security = WifiSecurity.WPA2 if args.password else WifiSecurity.OPEN
    request = ConnectRequest(
        ssid=args.ssid,
        interface=args.interface,
        password=args.password,
        security=security,
        hidden=args.hidden,
        dhcp=args.ip is None,
        ip=args.ip,
        gateway=args.gateway,
        dns=list(args.dns),
        enterprise=enterprise,
    )
    profile = engine.connect(request)
    print(f"Connected {profile.interface} to {profile.ssid}.")
    return 0


def _cmd_wifi(engine: NetworkEngine, args: argparse.Namespace) -> int:
    command = args.wifi_command
    if command == "scan":
        networks = engine.scan(args.interface)
        if not networks:
            print("No networks found.")
            return 1
        for network in networks:
            marker = "*" if network.connected else ("+" if network.in_history else " ")
            print(f"{marker} {network.ssid:<32} {network.signal_strength:>4} dBm  ch {network.channel:<3} {network.security.value}")
        return 0
    if command == "status":
        interface = engine.inventory.get(engine.wifi_interface(args.interface))
        _print_interface(interface)
        return 0
    if command == "details":
        details = engine.detailed_wifi_info(args.interface)
        if details is None:
            print("Not connected.")
            return 1
        for key, value in details.to_dict().items():
            if value is None or value == []:
                continue
            if key.endswith("_bytes"):
                value = format_bytes(value)
            print(f"{key}: {value}")
        return 0
    if command == "connect":
        return _cmd_wifi_connect(engine, args)
    if command == "disconnect":
        engine.disconnect(args.interface)
        print("Disconnected.")
        return 0
    if command == "power":
        engine.set_power(args.interface, args.state == "on")
        print(f"WiFi radio {args.state}.")
        return 0
    if command == "profiles":
        profiles = engine.profiles()
        if not profiles:
            print("No saved networks.")
            return 0
        for profile in profiles:
            last = profile.last_connected.isoformat(timespec="seconds") if profile.last_connected else "never"
            auto = "auto" if profile.auto_connect else "manual"
            print(f"{profile.ssid} on {profile.interface}: {auto}, priority {profile.priority}, last connected {last}")
        return 0
    if command == "forget":
        if not engine.forget(args.ssid, args.interface):
            print(f"No saved profile for {args.ssid}.")
            return 1
        print(f"Forgot {args.ssid}.")
        return 0
    if command == "auto-connect":
        if args.enabled is None:
            enabled = engine.toggle_auto_connect(args.ssid, args.interface)
        else:
            engine.set_auto_connect(args.ssid, args.interface, args.enabled)
            enabled = args.enabled
        print(f"Auto-connect for {args.ssid} {'enabled' if enabled else 'disabled'}.")
        return 0
    if command == "priority":
        engine.set_priority(args.ssid, args.interface, args.value)
        print(f"Priority for {args.ssid} set to {args.value}.")
        return 0
    return 1


def _cmd_wireguard(engine: NetworkEngine, args: argparse.Namespace) -> int:
    manager = WireGuardManager(engine.settings, engine.runner)
    command = args.wireguard_command
    if command == "keygen":
        pair = manager.generate_keys()
        print(f"PrivateKey = {pair.private_key}")
        print(f"PublicKey = {pair.public_key}")
        return 0
    if command == "import":
        config = manager.import_file(args.path, args.name)
        print(f"Created {config.interface_name} with {len(config.peers)} peer(s).")
        return 0
    if command == "up":
        manager.connect(args.name)
        print(f"{args.name} is up.")
        return 0
    if command == "down":
        manager.disconnect(args.name)
        print(f"{args.name} is down.")
        return 0
    if command == "remove":
        manager.destroy(args.name)
        print(f"Removed {args.name}.")
        return 0
    if command == "list":
        names = manager.list_interfaces()
        print("\n".join(names) if names else "No WireGuard interfaces.")
        return 0
    status = manager.status(args.name)
    if status is None:
        print(f"{args.name}: not running.")
        return 1
    print(f"{status.interface}: public key {status.public_key}, listen port {status.listen_port or '-'}")
    for peer in status.peers:
        handshake = peer.latest_handshake.isoformat(timespec="seconds") if peer.latest_handshake else "never"
        print(
            f"  peer {peer.public_key} endpoint {peer.endpoint or '-'} handshake {handshake} "
            f"rx {format_bytes(peer.transfer_rx)} tx {format_bytes(peer.transfer_tx)}"
        )
    return 0


def _cmd_hotspot(engine: NetworkEngine, args: argparse.Namespace) -> int:
    manager = HotspotManager(engine.settings, engine.inventory, engine.runner)
    if args.hotspot_command == "stop":
        manager.stop()
        print("Hotspot stopped.")
        return 0
    interface = engine.wifi_interface(args.interface)
    config = HotspotConfig(
        ssid=args.ssid,
        password=args.password,
        interface=interface,
        channel=args.channel,
        gateway=args.gateway,
    )
    uplink = manager.create(config)
    print(f"Hotspot {config.ssid} running on {interface}, sharing {uplink}.")
    return 0


def _cmd_daemon(engine: NetworkEngine) -> int:
    stop = threading.Event()

    def _handle(signum, frame) -> None:
        logger.info("received signal %s, stopping", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)
    engine.refresh()
    engine.run_forever(stop)
    return 0


def _cmd_web(engine: NetworkEngine, host: str, port: int) -> int:
    try:
        import uvicorn
    except ImportError:
        print("The web server needs uvicorn. Try: pip install lantern-net[web]")
        return 1
    engine.refresh()
    uvicorn.run(create_app(engine), host=host, port=port, log_level="info", access_log=False)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    path = resolve_config_path(args.config)
    if args.command == "init":
        return _cmd_init(path, args.force)
    try:
        settings = load_settings(path)
    except (OSError, ValueError) as exc:
        print(f"Could not read settings from {path}: {exc}")
        return 1
    configure_logging(settings, args.verbose)
    if args.command == "show":
        return _cmd_show(settings)
    if os.getenv("LANTERN_ALLOW_NON_ROOT") != "1" and os.geteuid() != 0:
        print("lantern must be run as root. Try: sudo lantern")
        return 1

    engine = NetworkEngine(settings)
    try:
        if args.command == "interfaces":
            return _cmd_interfaces(engine)
        if args.command == "interface":
            return _cmd_interface(engine, args)
        if args.command == "wifi":
            return _cmd_wifi(engine, args)
        if args.command == "wireguard":
            return _cmd_wireguard(engine, args)
        if args.command == "hotspot":
            return _cmd_hotspot(engine, args)
        if args.command == "daemon":
            return _cmd_daemon(engine)
        if args.command == "web":
            return _cmd_web(engine, args.host, args.port)
    except NetworkError as exc:
        print(str(exc))
        return 1
    except OSError as exc:
        print(f"Error: {exc}")
        return 1
    return 1


if __name__ == "__main__":
    raise SystemExit(main())

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock

from lantern_net.core import Settings
from lantern_net.errors import InvalidConfig, ResourceUnavailable, WireGuardError
from lantern_net.system import CommandResult
from lantern_net.wireguard import (
    WireGuardConfig,
    WireGuardManager,
    WireGuardPeer,
    parse_config,
    parse_dump,
    render_netdev,
    render_network,
)


WG_QUICK = """[Interface]
PrivateKey = cHJpdmF0ZWtleXByaXZhdGVrZXlwcml2YXRla2V5MDA=
Address = 10.8.0.2/24, fd08::2/64
DNS = 10.8.0.1
MTU = 1420

[Peer]
# office gateway
PublicKey = cHVibGlja2V5cHVibGlja2V5cHVibGlja2V5cHViMDA=
Endpoint = vpn.example.com:51820
AllowedIPs = 10.8.0.0/24, 192.168.50.0/24
PersistentKeepalive = 25
"""

WG_DUMP = (
    "cHJpdmF0ZQ==\tcHVibGlj\t51820\toff\n"
    "cGVlcjE=\t(none)\t203.0.113.5:51820\t10.8.0.0/24,192.168.50.0/24\t1717243200\t4096\t2048\t25\n"
    "cGVlcjI=\t(none)\t(none)\t10.9.0.0/24\t0\t0\t0\toff\n"
)


class FakeRunner:
    def __init__(self, responses=None) -> None:
        self.responses = responses or {}
        self.calls = []

    def __call__(self, command, timeout=None, input_text=None):
        self.calls.append((list(command), input_text))
        return self.responses.get(" ".join(command), CommandResult(0, ""))


class TestWireGuardFiles(unittest.TestCase):
    def test_wg_quick_import(self) -> None:
        config = parse_config(WG_QUICK, "wg0")

        self.assertEqual(config.addresses, ["10.8.0.2/24", "fd08::2/64"])
        self.assertEqual(config.dns, ["10.8.0.1"])
        self.assertEqual(config.mtu, 1420)
        self.assertEqual(len(config.peers), 1)
        peer = config.peers[0]
        self.assertEqual(peer.name, "office gateway")
        self.assertEqual(peer.allowed_ips, ["10.8.0.0/24", "192.168.50.0/24"])
        self.assertEqual(peer.persistent_keepalive, 25)

    def test_generated_peer_parses_back(self) -> None:
        peer = WireGuardPeer(
            public_key="cGVlcg==",
            endpoint="198.51.100.7:51820",
            allowed_ips=["0.0.0.0/0", "::/0"],
            persistent_keepalive=15,
            name="phone",
        )
        config = WireGuardConfig(interface_name="wg1", private_key="cHJpdg==", listen_port=51820, peers=[peer])

        parsed = parse_config(render_netdev(config), "wg1")

        self.assertEqual(parsed.private_key, "cHJpdg==")
        self.assertEqual(parsed.listen_port, 51820)
        self.assertEqual(parsed.peers, [peer])

    def test_network_file_routes_skip_default(self) -> None:
        config = parse_config(WG_QUICK, "wg0")
        config.peers[0].allowed_ips.append("0.0.0.0/0")

        content = render_network(config)

        self.assertIn("Address=fd08::2/64", content)
        self.assertIn("Destination=192.168.50.0/24", content)
        self.assertNotIn("Destination=0.0.0.0/0", content)
        self.assertIn("MTUBytes=1420", content)

    def test_netdev_requires_keys(self) -> None:
        with self.assertRaises(InvalidConfig):
            render_netdev(WireGuardConfig(interface_name="wg0"))
        with self.assertRaises(InvalidConfig):
            render_netdev(WireGuardConfig(interface_name="wg0", private_key="x", peers=[WireGuardPeer(public_key="")]))

    def test_dump(self) -> None:
        status = parse_dump(WG_DUMP, "wg0")

        self.assertEqual(status.public_key, "cHVibGlj")
        self.assertEqual(status.listen_port, 51820)
        self.assertEqual(len(status.peers), 2)
        first, second = status.peers
        self.assertEqual(first.endpoint, "203.0.113.5:51820")
        self.assertEqual(first.transfer_rx, 4096)
        self.assertEqual(first.persistent_keepalive, 25)
        self.assertIsNone(second.endpoint)
        self.assertIsNone(second.latest_handshake)
        self.assertTrue(status.connected)
        self.assertEqual(status.last_handshake, first.latest_handshake)

    def test_empty_dump(self) -> None:
        self.assertIsNone(parse_dump("", "wg0"))


class TestWireGuardManager(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = TemporaryDirectory()
        self.settings = Settings()
        self.settings.paths.networkd_dir = Path(self._temp.name) / "network"

    def tearDown(self) -> None:
        self._temp.cleanup()

    def test_generate_keys(self) -> None:
        runner = FakeRunner(
            {"wg genkey": CommandResult(0, "cHJpdg==\n"), "wg pubkey": CommandResult(0, "cHVi\n")}
        )
        manager = WireGuardManager(self.settings, runner, lambda seconds: None)

        with mock.patch("lantern_net.wireguard._find_command", return_value="/usr/bin/wg"):
            pair = manager.generate_keys()

        self.assertEqual((pair.private_key, pair.public_key), ("cHJpdg==", "cHVi"))
        self.assertEqual(runner.calls[-1], (["wg", "pubkey"], "cHJpdg==\n"))

    def test_generate_keys_without_tools(self) -> None:
        manager = WireGuardManager(self.settings, FakeRunner())

        with mock.patch("lantern_net.wireguard._find_command", return_value=None):
            with self.assertRaises(ResourceUnavailable):
                manager.generate_keys()

    def test_genkey_failure(self) -> None:
        manager = WireGuardManager(self.settings, FakeRunner({"wg genkey": CommandResult(1, "boom")}))

        with mock.patch("lantern_net.wireguard._find_command", return_value="/usr/bin/wg"):
            with self.assertRaises(WireGuardError):
                manager.generate_keys()

    def test_import_and_destroy(self) -> None:
        source = Path(self._temp.name) / "wg0.conf"
        source.write_text(WG_QUICK, encoding="utf-8")
        runner = FakeRunner({"wg pubkey": CommandResult(0, "bG9jYWw=\n")})
        manager = WireGuardManager(self.settings, runner, lambda seconds: None)

        config = manager.import_file(source, "wg0")

        netdev = self.settings.paths.networkd_dir / "50-wg0.netdev"
        self.assertEqual(config.public_key, "bG9jYWw=")
        self.assertTrue(netdev.exists())
        self.assertEqual(netdev.stat().st_mode & 0o777, 0o640)
        self.assertIn((["ip", "link", "set", "wg0", "up"], None), runner.calls)

        manager.destroy("wg0")

        self.assertFalse(netdev.exists())
        self.assertFalse((self.settings.paths.networkd_dir / "50-wg0.network").exists())

    def test_status_and_list(self) -> None:
        runner = FakeRunner(
            {
                "wg show wg0 dump": CommandResult(0, WG_DUMP),
                "wg show interfaces": CommandResult(0, "wg0 wg1\n"),
                "wg show wg9 dump": CommandResult(1, "Unable to access interface: No such device"),
            }
        )
        manager = WireGuardManager(self.settings, runner)

        self.assertEqual(manager.status("wg0").listen_port, 51820)
        self.assertIsNone(manager.status("wg9"))
        self.assertEqual(manager.list_interfaces(), ["wg0", "wg1"])


if __name__ == "__main__":
    unittest.main()

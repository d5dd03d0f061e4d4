import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from lantern_net.core import Settings
from lantern_net.errors import CommandFailed, InterfaceNotFound
from lantern_net.inventory import InterfaceInventory
from lantern_net.models import InterfaceStats, OperState, WifiInfo, WifiNetwork
from lantern_net.system import CommandResult


IP_ADDR = json.dumps(
    [
        {"ifname": "lo", "operstate": "UNKNOWN", "addr_info": [{"family": "inet", "local": "127.0.0.1", "prefixlen": 8}]},
        {
            "ifname": "eth0",
            "address": "52:54:00:12:34:56",
            "operstate": "UP",
            "mtu": 1500,
            "addr_info": [{"family": "inet", "local": "192.168.1.20", "prefixlen": 24}],
        },
        {"ifname": "wlan0", "address": "aa:bb:cc:dd:ee:ff", "operstate": "UP", "mtu": 1500, "addr_info": []},
        {"ifname": "wlan1", "address": "aa:bb:cc:dd:ee:fe", "operstate": "DOWN", "mtu": 1500, "addr_info": []},
    ]
)

IW_LINK = """Connected to aa:bb:cc:dd:ee:01 (on wlan0)
\tSSID: home
\tfreq: 2437
\tsignal: -52 dBm
\ttx bitrate: 72.2 MBit/s
"""

STATION_DUMP = """Station aa:bb:cc:dd:ee:01 (on wlan0)
\ttx retries:\t12
\ttx failed:\t1
\tconnected time:\t3600 seconds
"""


class FakeRunner:
    def __init__(self, responses) -> None:
        self.responses = responses
        self.calls = []

    def __call__(self, command, timeout=None, input_text=None):
        self.calls.append(list(command))
        return self.responses.get(" ".join(command), CommandResult(1, "unexpected command"))


class FakeChain:
    def __init__(self, networks=None, failing=()) -> None:
        self.networks = networks or {}
        self.failing = set(failing)
        self.queried = []

    def current_connection(self, device):
        self.queried.append(device)
        if device in self.failing:
            raise CommandFailed(["iw", "dev", device, "link"], "No such device")
        return self.networks.get(device)


HOME = WifiNetwork(ssid="home", bssid="aa:bb:cc:dd:ee:01", signal_strength=-52, frequency=2437, channel=6, connected=True)


class TestInterfaceInventory(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = TemporaryDirectory()
        root = Path(self._temp.name)
        self.settings = Settings()
        self.settings.paths.sysfs_net = root / "sys"
        self.settings.paths.procfs_ipv6 = root / "proc"
        self.settings.paths.resolv_conf = root / "resolv.conf"
        self.settings.paths.resolv_conf.write_text("nameserver 192.168.1.1\n", encoding="utf-8")
        for name in ("eth0", "wlan0", "wlan1"):
            (self.settings.paths.sysfs_net / name / "statistics").mkdir(parents=True)
            (self.settings.paths.sysfs_net / name / "operstate").write_text("up\n", encoding="utf-8")
        (self.settings.paths.sysfs_net / "wlan0" / "wireless").mkdir()
        (self.settings.paths.sysfs_net / "wlan1" / "phy80211").mkdir()
        stats = self.settings.paths.sysfs_net / "eth0" / "statistics"
        (stats / "rx_bytes").write_text("2048\n", encoding="utf-8")
        (stats / "tx_packets").write_text("garbage\n", encoding="utf-8")
        ipv6 = self.settings.paths.procfs_ipv6 / "eth0"
        ipv6.mkdir(parents=True)
        (ipv6 / "accept_ra").write_text("0\n", encoding="utf-8")
        (ipv6 / "use_tempaddr").write_text("2\n", encoding="utf-8")

        self.runner = FakeRunner(
            {
                "ip -j addr show": CommandResult(0, IP_ADDR),
                "resolvectl status": CommandResult(127, "command not found: resolvectl"),
                "ip -j route show default dev eth0": CommandResult(0, '[{"dst": "default", "gateway": "192.168.1.1"}]'),
                "ip -j route show default dev wlan0": CommandResult(0, "[]"),
                "ip -j route show default dev wlan1": CommandResult(0, "[]"),
                "ip -6 route show default dev eth0": CommandResult(0, "default via fe80::1 dev eth0 proto ra\n"),
                "systemctl is-active --quiet dhcpcd": CommandResult(3, "inactive"),
                "ip route show default": CommandResult(0, "default via 192.168.1.1 dev eth0 proto dhcp\n"),
                "iw dev wlan0 link": CommandResult(0, IW_LINK),
                "iw dev wlan0 station dump": CommandResult(0, STATION_DUMP),
                "iw dev wlan0 info": CommandResult(0, "Interface wlan0\n\ttype managed\n\ttxpower 20.00 dBm\n"),
                "ip link set eth0 down": CommandResult(0, ""),
            }
        )
        self.chain = FakeChain({"wlan0": HOME})
        self.inventory = InterfaceInventory(self.settings, self.chain, self.runner)

    def tearDown(self) -> None:
        self._temp.cleanup()

    def test_discover_builds_full_records(self) -> None:
        interfaces = {interface.name: interface for interface in self.inventory.discover()}

        self.assertEqual(sorted(interfaces), ["eth0", "wlan0", "wlan1"])
        eth0 = interfaces["eth0"]
        self.assertEqual(eth0.state, OperState.UP)
        self.assertEqual(eth0.ipv4_addresses, ("192.168.1.20/24",))
        self.assertEqual(eth0.gateway, "192.168.1.1")
        self.assertEqual(eth0.ipv6_gateway, "fe80::1")
        self.assertEqual(eth0.dns_servers, ("192.168.1.1",))
        self.assertEqual(eth0.stats.rx_bytes, 2048)
        self.assertEqual(eth0.stats.tx_packets, 0)
        self.assertFalse(eth0.ipv6_info.accept_ra)
        self.assertTrue(eth0.ipv6_info.privacy_extensions)
        self.assertFalse(eth0.ipv6_info.dhcpv6_active)
        self.assertFalse(eth0.is_wireless)
        self.assertTrue(interfaces["wlan0"].is_wireless)
        self.assertTrue(interfaces["wlan1"].is_wireless)
        self.assertIsNone(interfaces["wlan0"].ipv6_gateway)

    def test_discover_queries_resolvectl_once(self) -> None:
        self.inventory.discover()

        self.assertEqual(self.runner.calls.count(["resolvectl", "status"]), 1)

    def test_discover_failure_raises(self) -> None:
        self.runner.responses["ip -j addr show"] = CommandResult(1, "Cannot open netlink socket")

        with self.assertRaises(CommandFailed):
            self.inventory.discover()

    def test_wifi_info_collected_for_up_wireless_only(self) -> None:
        interfaces = self.inventory.discover()

        infos = self.inventory.collect_wifi_info(interfaces)

        self.assertEqual(self.chain.queried, ["wlan0"])
        self.assertEqual(infos["wlan0"].current_network, HOME)
        self.assertEqual(infos["wlan0"].channel, 6)
        self.assertEqual(infos["wlan1"], WifiInfo())
        self.assertNotIn("eth0", infos)

    def test_failed_link_query_keeps_previous_info(self) -> None:
        interfaces = self.inventory.discover()
        self.inventory.install(interfaces)
        self.inventory.install_wifi_info(self.inventory.collect_wifi_info(interfaces))
        self.chain.failing.add("wlan0")

        self.inventory.install_wifi_info(self.inventory.collect_wifi_info(self.inventory.snapshot()))
        self.inventory.install(self.inventory.discover())

        self.assertEqual(self.inventory.get("wlan0").wifi_info.current_network, HOME)

    def test_install_stats_and_get(self) -> None:
        self.inventory.install(self.inventory.discover())

        self.inventory.install_stats({"eth0": InterfaceStats(rx_bytes=99), "gone0": InterfaceStats(rx_bytes=1)})

        self.assertEqual(self.inventory.get("eth0").stats.rx_bytes, 99)
        with self.assertRaises(InterfaceNotFound):
            self.inventory.get("gone0")

    def test_snapshot_is_a_copy(self) -> None:
        self.inventory.install(self.inventory.discover())

        self.inventory.snapshot().clear()

        self.assertEqual(len(self.inventory.snapshot()), 3)

    def test_detailed_wifi_info(self) -> None:
        details = self.inventory.detailed_wifi_info("wlan0")

        self.assertEqual(details.ssid, "home")
        self.assertEqual(details.signal_quality, 63)
        self.assertEqual(details.tx_power, 20)
        self.assertEqual(details.link_speed, 72)
        self.assertEqual(details.tx_retries, 12)
        self.assertEqual(details.connected_time, 3600)
        self.assertEqual(details.channel, 6)

    def test_detailed_wifi_info_when_not_connected(self) -> None:
        self.assertIsNone(self.inventory.detailed_wifi_info("wlan1"))

    def test_uplink_and_state(self) -> None:
        self.assertEqual(self.inventory.internet_interface(), "eth0")

        self.inventory.set_state("eth0", False)
        self.assertIn(["ip", "link", "set", "eth0", "down"], self.runner.calls)
        with self.assertRaises(InterfaceNotFound):
            self.inventory.set_state("eth9", True)

    def test_connectivity(self) -> None:
        self.assertFalse(self.inventory.check_connectivity())
        self.runner.responses["ping -c 1 -W 3 8.8.8.8"] = CommandResult(0, "1 received")
        self.assertTrue(self.inventory.check_connectivity())


if __name__ == "__main__":
    unittest.main()

import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from tempfile import TemporaryDirectory

from lantern_net.core import InterfaceProfile, WifiProfile
from lantern_net.models import EnterpriseCredentials, WifiNetwork
from lantern_net.profiles import ProfileStore, rank_profiles


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestRanking(unittest.TestCase):
    def test_auto_connect_then_priority(self) -> None:
        a = WifiProfile(ssid="A", interface="wlan0", auto_connect=True, priority=1)
        b = WifiProfile(ssid="B", interface="wlan0", auto_connect=False, priority=10)
        c = WifiProfile(ssid="C", interface="wlan0", auto_connect=True, priority=5)

        self.assertEqual([profile.ssid for profile in rank_profiles([a, b, c])], ["C", "A", "B"])

    def test_recent_connection_breaks_ties(self) -> None:
        never = WifiProfile(ssid="never", interface="wlan0", auto_connect=True)
        old = WifiProfile(ssid="old", interface="wlan0", auto_connect=True, last_connected=NOW - timedelta(days=3))
        recent = WifiProfile(ssid="recent", interface="wlan0", auto_connect=True, last_connected=NOW)

        ranked = rank_profiles([never, old, recent])

        self.assertEqual([profile.ssid for profile in ranked], ["recent", "old", "never"])


class TestProfileStore(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = TemporaryDirectory()
        self.path = Path(self._temp.name) / "profiles.toml"

    def tearDown(self) -> None:
        self._temp.cleanup()

    def test_add_replaces_same_key(self) -> None:
        store = ProfileStore(self.path)
        store.add(WifiProfile(ssid="home", interface="wlan0", password="first-pass"))
        store.add(WifiProfile(ssid="home", interface="wlan1", password="other-pass"))
        store.add(WifiProfile(ssid="home", interface="wlan0", password="second-pass"))

        profiles = store.profiles()

        self.assertEqual(len(profiles), 2)
        self.assertEqual(store.get("home", "wlan0").password, "second-pass")
        self.assertEqual(profiles[-1].key, ("home", "wlan0"))

    def test_returned_profiles_are_copies(self) -> None:
        store = ProfileStore(self.path)
        store.add(WifiProfile(ssid="home", interface="wlan0"))

        store.get("home", "wlan0").priority = 99

        self.assertEqual(store.get("home", "wlan0").priority, 0)

    def test_nested_profile_state_is_not_shared(self) -> None:
        store = ProfileStore(self.path)
        original = WifiProfile(
            ssid="corp",
            interface="wlan0",
            dns=["1.1.1.1"],
            enterprise=EnterpriseCredentials(username="alice", password="hunter22"),
        )
        store.add(original)
        original.dns.append("8.8.8.8")

        fetched = store.get("corp", "wlan0")
        fetched.dns.append("6.6.6.6")
        fetched.enterprise.username = "mallory"
        store.profiles()[0].dns.clear()

        stored = store.get("corp", "wlan0")
        self.assertEqual(stored.dns, ["1.1.1.1"])
        self.assertEqual(stored.enterprise.username, "alice")

    def test_interface_profile_dns_is_not_shared(self) -> None:
        store = ProfileStore(self.path)
        store.add_interface_profile(InterfaceProfile(name="office", interface="eth0", dns=["9.9.9.9"]))

        store.get_interface_profile("office").dns.append("6.6.6.6")

        self.assertEqual(store.get_interface_profile("office").dns, ["9.9.9.9"])

    def test_mutations_report_missing_profiles(self) -> None:
        store = ProfileStore(self.path)
        store.add(WifiProfile(ssid="home", interface="wlan0"))

        self.assertTrue(store.toggle_auto_connect("home", "wlan0"))
        self.assertFalse(store.toggle_auto_connect("home", "wlan0"))
        self.assertIsNone(store.toggle_auto_connect("cafe", "wlan0"))
        self.assertTrue(store.set_priority("home", "wlan0", 4))
        self.assertFalse(store.set_priority("cafe", "wlan0", 4))
        self.assertTrue(store.mark_connected("home", "wlan0", NOW))
        self.assertEqual(store.get("home", "wlan0").last_connected, NOW)
        self.assertTrue(store.remove("home", "wlan0"))
        self.assertFalse(store.remove("home", "wlan0"))

    def test_save_and_reload(self) -> None:
        store = ProfileStore(self.path)
        store.add(WifiProfile(ssid="home", interface="wlan0", password="secret123", auto_connect=True, priority=3))
        store.add_interface_profile(InterfaceProfile(name="office", interface="eth0", dhcp=False, ip="10.0.0.5/24"))

        self.assertTrue(store.save())
        self.assertFalse(store.save())

        reloaded = ProfileStore.load(self.path)
        self.assertEqual(reloaded.get("home", "wlan0").priority, 3)
        self.assertEqual(reloaded.get_interface_profile("office").ip, "10.0.0.5/24")

    def test_corrupt_file_loads_empty(self) -> None:
        self.path.write_text("wifi_profiles = [[[", encoding="utf-8")

        with self.assertLogs("lantern_net.profiles", level="WARNING"):
            store = ProfileStore.load(self.path)

        self.assertEqual(store.profiles(), [])

    def test_save_failure_is_not_raised(self) -> None:
        blocker = Path(self._temp.name) / "file"
        blocker.write_text("", encoding="utf-8")
        store = ProfileStore(blocker / "profiles.toml")
        store.add(WifiProfile(ssid="home", interface="wlan0"))

        with self.assertLogs("lantern_net.profiles", level="WARNING"):
            self.assertFalse(store.save())

    def test_annotate_history(self) -> None:
        store = ProfileStore(self.path)
        store.add(WifiProfile(ssid="home", interface="wlan0"))
        networks = [WifiNetwork(ssid="home"), WifiNetwork(ssid="cafe")]

        annotated = store.annotate_history(networks, "wlan0")

        self.assertEqual([network.in_history for network in annotated], [True, False])
        self.assertEqual([network.in_history for network in store.annotate_history(networks, "wlan1")], [False, False])


if __name__ == "__main__":
    unittest.main()

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from lantern_net.core import Settings
from lantern_net.errors import CommandFailed, EnterpriseWiFiError, InvalidConfig
from lantern_net.models import (
    EnterpriseAuthMethod,
    EnterpriseCredentials,
    Phase2Auth,
    WifiCredentials,
    WifiSecurity,
)
from lantern_net.networkd import (
    Ipv6Config,
    NetworkdWriter,
    render_ipv6_network_file,
    render_network_file,
    render_wpa_supplicant,
)
from lantern_net.system import CommandResult


class RecordingRunner:
    def __init__(self, failures=None) -> None:
        self.failures = failures or {}
        self.calls = []

    def __call__(self, command, timeout=None, input_text=None):
        self.calls.append(list(command))
        return self.failures.get(" ".join(command), CommandResult(0, ""))


class TestRendering(unittest.TestCase):
    def test_dhcp_network_file(self) -> None:
        content = render_network_file("eth0", dhcp=True)

        self.assertIn("Name=eth0", content)
        self.assertIn("DHCP=yes", content)
        self.assertNotIn("Address=", content)

    def test_static_network_file(self) -> None:
        content = render_network_file("eth0", dhcp=False, ip="10.0.0.5/24", gateway="10.0.0.1", dns=["1.1.1.1", "9.9.9.9"])

        self.assertIn("Address=10.0.0.5/24", content)
        self.assertIn("Gateway=10.0.0.1", content)
        self.assertIn("DNS=9.9.9.9", content)

    def test_static_without_address_is_rejected(self) -> None:
        with self.assertRaises(InvalidConfig):
            render_network_file("eth0", dhcp=False)
        with self.assertRaises(InvalidConfig):
            render_network_file("eth0", dhcp=False, ip="10.0.0.5")
        with self.assertRaises(InvalidConfig):
            render_network_file("eth0", dhcp=False, ip="10.0.0.5/24", gateway="router")

    def test_supplicant_per_security(self) -> None:
        open_net = render_wpa_supplicant(WifiCredentials(ssid="cafe", security=WifiSecurity.OPEN), "DE")
        wep = render_wpa_supplicant(WifiCredentials(ssid="old", password="abcde", security=WifiSecurity.WEP))
        wpa3 = render_wpa_supplicant(WifiCredentials(ssid="new", password="secret123", security=WifiSecurity.WPA3))
        hidden = render_wpa_supplicant(WifiCredentials(ssid="lab", password="secret123", hidden=True))

        self.assertIn("country=DE", open_net)
        self.assertIn("key_mgmt=NONE", open_net)
        self.assertIn('wep_key0="abcde"', wep)
        self.assertIn("wep_tx_keyidx=0", wep)
        self.assertIn("key_mgmt=SAE", wpa3)
        self.assertIn("ieee80211w=2", wpa3)
        self.assertIn("scan_ssid=1", hidden)
        self.assertIn("key_mgmt=WPA-PSK", hidden)

    def test_psk_length_and_raw_hex(self) -> None:
        raw = "a" * 64
        self.assertIn(f"psk={raw}\n", render_wpa_supplicant(WifiCredentials(ssid="home", password=raw)))
        with self.assertRaises(InvalidConfig):
            render_wpa_supplicant(WifiCredentials(ssid="home", password="short"))

    def test_passphrase_with_quotes_stays_quoted(self) -> None:
        password = 'pa"ss\\word'
        content = render_wpa_supplicant(WifiCredentials(ssid="home", password=password, security=WifiSecurity.WPA2))

        self.assertIn('    psk="' + password + '"\n', content)
        self.assertNotIn(password.encode("utf-8").hex(), content)

    def test_awkward_ssid_is_hex_encoded(self) -> None:
        ssid = 'my "net"'
        content = render_wpa_supplicant(WifiCredentials(ssid=ssid, security=WifiSecurity.OPEN))

        self.assertIn("ssid=" + ssid.encode("utf-8").hex(), content)

    def test_enterprise_block(self) -> None:
        credentials = WifiCredentials(
            ssid="corp",
            security=WifiSecurity.ENTERPRISE,
            enterprise=EnterpriseCredentials(
                auth_method=EnterpriseAuthMethod.PEAP,
                username="alice",
                password="hunter22",
                identity="anonymous",
                ca_cert="/etc/ssl/ca.pem",
                phase2_auth=Phase2Auth.MSCHAPV2,
            ),
        )

        content = render_wpa_supplicant(credentials)

        self.assertIn("key_mgmt=WPA-EAP", content)
        self.assertIn("eap=PEAP", content)
        self.assertIn('identity="alice"', content)
        self.assertIn('anonymous_identity="anonymous"', content)
        self.assertIn('ca_cert="/etc/ssl/ca.pem"', content)
        self.assertIn('phase2="auth=MSCHAPV2"', content)

    def test_enterprise_requirements(self) -> None:
        tls = EnterpriseCredentials(auth_method=EnterpriseAuthMethod.TLS, username="alice")
        with self.assertRaises(EnterpriseWiFiError):
            render_wpa_supplicant(WifiCredentials(ssid="corp", security=WifiSecurity.ENTERPRISE, enterprise=tls))
        with self.assertRaises(EnterpriseWiFiError):
            render_wpa_supplicant(WifiCredentials(ssid="corp", security=WifiSecurity.ENTERPRISE))

    def test_phase2_dropped_for_tls(self) -> None:
        credentials = EnterpriseCredentials(auth_method=EnterpriseAuthMethod.TLS, phase2_auth=Phase2Auth.PAP)

        self.assertIsNone(credentials.phase2_auth)

    def test_ipv6_network_file(self) -> None:
        config = Ipv6Config(addresses=["2001:db8::5/64"], gateway="2001:db8::1", privacy_extensions=True)
        content = render_ipv6_network_file("eth0", config)

        self.assertIn("DHCP=yes", content)
        self.assertIn("Address=2001:db8::5/64", content)
        self.assertIn("IPv6PrivacyExtensions=yes", content)

        disabled = render_ipv6_network_file("eth0", Ipv6Config(enable_ipv6=False))
        self.assertIn("DHCP=ipv4", disabled)
        self.assertIn("IPv6AcceptRA=no", disabled)


class TestNetworkdWriter(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = TemporaryDirectory()
        self.settings = Settings()
        self.settings.paths.networkd_dir = Path(self._temp.name) / "network"
        self.settings.paths.wpa_supplicant_dir = Path(self._temp.name) / "wpa_supplicant"

    def tearDown(self) -> None:
        self._temp.cleanup()

    def test_apply_addressing_writes_and_reloads(self) -> None:
        runner = RecordingRunner()
        writer = NetworkdWriter(self.settings, runner)

        path = writer.apply_addressing("eth0", dhcp=True, wireless=False)

        self.assertEqual(path.name, "10-eth0.network")
        self.assertTrue(path.exists())
        self.assertEqual(runner.calls, [["networkctl", "reload"], ["networkctl", "reconfigure", "eth0"]])

    def test_secrets_are_private(self) -> None:
        writer = NetworkdWriter(self.settings, RecordingRunner())

        path = writer.apply_wifi_secrets("wlan0", WifiCredentials(ssid="home", password="secret123"))

        self.assertEqual(path.stat().st_mode & 0o777, 0o600)

    def test_teardown_removes_files(self) -> None:
        runner = RecordingRunner({"systemctl stop wpa_supplicant@wlan0.service": CommandResult(5, "not loaded")})
        writer = NetworkdWriter(self.settings, runner)
        writer.apply_wifi_secrets("wlan0", WifiCredentials(ssid="home", password="secret123"))
        writer.apply_addressing("wlan0")

        writer.teardown("wlan0")

        self.assertFalse(writer.supplicant_path("wlan0").exists())
        self.assertFalse(writer.network_path("wlan0", True).exists())
        self.assertIn(["systemctl", "disable", "wpa_supplicant@wlan0.service"], runner.calls)

    def test_reload_failure_raises(self) -> None:
        writer = NetworkdWriter(self.settings, RecordingRunner({"networkctl reload": CommandResult(1, "Failed")}))

        with self.assertRaises(CommandFailed):
            writer.apply_addressing("eth0", wireless=False)

    def test_apply_ipv6_sets_sysctls_and_addresses(self) -> None:
        runner = RecordingRunner()
        writer = NetworkdWriter(self.settings, runner)

        path = writer.apply_ipv6("eth0", Ipv6Config(addresses=["2001:db8::5/64"], accept_ra=False))

        self.assertEqual(path.name, "20-eth0.network")
        self.assertIn(["sysctl", "-w", "net.ipv6.conf.eth0.accept_ra=0"], runner.calls)
        self.assertIn(["sysctl", "-w", "net.ipv6.conf.eth0.use_tempaddr=0"], runner.calls)
        self.assertIn(["ip", "-6", "addr", "add", "2001:db8::5/64", "dev", "eth0"], runner.calls)


if __name__ == "__main__":
    unittest.main()

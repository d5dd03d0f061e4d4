from __future__ import annotations

import copy
import dataclasses
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List

from lantern_net.core import InterfaceProfile, ProfileDocument, WifiProfile, load_profiles, save_profiles
from lantern_net.models import WifiNetwork


logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _ranking_key(profile: WifiProfile) -> tuple:
    last = profile.last_connected
    return (
        not profile.auto_connect,
        -profile.priority,
        last is None,
        -((last or _EPOCH) - _EPOCH).total_seconds(),
    )


def rank_profiles(profiles: Iterable[WifiProfile]) -> List[WifiProfile]:
    """Auto-connect order: enabled first, then priority, then most recently used."""
    return sorted(profiles, key=_ranking_key)


class ProfileStore:
    """Owner of every remembered WiFi and interface profile.

    Profiles are keyed by (ssid, interface); adding a profile evicts any
    profile with the same key before appending, so the last write wins.
    Persistence failures are logged and never raised.
    """

    def __init__(self, path: Path, document: ProfileDocument | None = None) -> None:
        self.path = Path(path)
        document = document or ProfileDocument()
        self._wifi: List[WifiProfile] = copy.deepcopy(list(document.wifi_profiles))
        self._interfaces: List[InterfaceProfile] = copy.deepcopy(list(document.profiles))

    @classmethod
    def load(cls, path: Path) -> "ProfileStore":
        try:
            document = load_profiles(path)
        except (OSError, ValueError) as exc:
            logger.warning("could not load profiles from %s: %s", path, exc)
            document = ProfileDocument()
        return cls(path, document)

    def save(self) -> bool:
        document = ProfileDocument(wifi_profiles=copy.deepcopy(self._wifi), profiles=copy.deepcopy(self._interfaces))
        try:
            return save_profiles(document, self.path)
        except OSError as exc:
            logger.warning("could not save profiles to %s: %s", self.path, exc)
            return False

    def profiles(self) -> List[WifiProfile]:
        return [copy.deepcopy(profile) for profile in self._wifi]

    def get(self, ssid: str, interface: str) -> WifiProfile | None:
        for profile in self._wifi:
            if profile.key == (ssid, interface):
                return copy.deepcopy(profile)
        return None

    def add(self, profile: WifiProfile) -> None:
        self._wifi = [existing for existing in self._wifi if existing.key != profile.key]
        self._wifi.append(copy.deepcopy(profile))

    def remove(self, ssid: str, interface: str) -> bool:
        remaining = [profile for profile in self._wifi if profile.key != (ssid, interface)]
        removed = len(remaining) != len(self._wifi)
        self._wifi = remaining
        return removed

    def rank_for_auto_connect(self) -> List[WifiProfile]:
        return rank_profiles(self.profiles())

    def _find(self, ssid: str, interface: str) -> WifiProfile | None:
        for profile in self._wifi:
            if profile.key == (ssid, interface):
                return profile
        return None

    def mark_connected(self, ssid: str, interface: str, when: datetime | None = None) -> bool:
        profile = self._find(ssid, interface)
        if profile is None:
            return False
        profile.last_connected = when or datetime.now(timezone.utc)
        return True

    def set_auto_connect(self, ssid: str, interface: str, enabled: bool) -> bool:
        profile = self._find(ssid, interface)
        if profile is None:
            return False
        profile.auto_connect = enabled
        return True

    def toggle_auto_connect(self, ssid: str, interface: str) -> bool | None:
        profile = self._find(ssid, interface)
        if profile is None:
            return None
        profile.auto_connect = not profile.auto_connect
        return profile.auto_connect

    def set_priority(self, ssid: str, interface: str, priority: int) -> bool:
        profile = self._find(ssid, interface)
        if profile is None:
            return False
        profile.priority = int(priority)
        return True

    def known_ssids(self, interface: str | None = None) -> set[str]:
        return {
            profile.ssid
            for profile in self._wifi
            if interface is None or profile.interface == interface
        }

    def annotate_history(self, networks: Iterable[WifiNetwork], interface: str | None = None) -> List[WifiNetwork]:
        known = self.known_ssids(interface)
        return [dataclasses.replace(network, in_history=network.ssid in known) for network in networks]

    def interface_profiles(self) -> List[InterfaceProfile]:
        return [copy.deepcopy(profile) for profile in self._interfaces]

    def get_interface_profile(self, name: str) -> InterfaceProfile | None:
        for profile in self._interfaces:
            if profile.name == name:
                return copy.deepcopy(profile)
        return None

    def add_interface_profile(self, profile: InterfaceProfile) -> None:
        self._interfaces = [existing for existing in self._interfaces if existing.name != profile.name]
        self._interfaces.append(copy.deepcopy(profile))

    def remove_interface_profile(self, name: str) -> bool:
        remaining = [profile for profile in self._interfaces if profile.name != name]
        removed = len(remaining) != len(self._interfaces)
        self._interfaces = remaining
        return removed

from __future__ import annotations

from typing import Sequence


class NetworkError(Exception):
    """Base class for every failure the engine reports to a caller."""


class CommandFailed(NetworkError):
    def __init__(self, command: str | Sequence[str], details: str) -> None:
        if not isinstance(command, str):
            command = " ".join(command)
        self.command = command
        self.details = details
        super().__init__(f"Command failed: {command} - {details}")


class InterfaceNotFound(NetworkError):
    def __init__(self, interface: str) -> None:
        self.interface = interface
        super().__init__(f"Interface not found: {interface}")


class WiFiError(NetworkError):
    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"WiFi operation failed: {details}")


class WireGuardError(NetworkError):
    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"WireGuard operation failed: {details}")


class InvalidConfig(NetworkError):
    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"Invalid configuration: {details}")


class PermissionDenied(NetworkError):
    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Permission denied: {operation}")


class ResourceUnavailable(NetworkError):
    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Resource unavailable: {resource}")


class HotspotError(NetworkError):
    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"Hotspot operation failed: {details}")


class EnterpriseWiFiError(NetworkError):
    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"Enterprise WiFi error: {details}")

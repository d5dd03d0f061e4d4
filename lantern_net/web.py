from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import FastAPI, Form, Request
from fastapi.responses import JSONResponse

from lantern_net.core import WifiProfile, load_settings
from lantern_net.engine import ConnectRequest, NetworkEngine
from lantern_net.errors import (
    EnterpriseWiFiError,
    InterfaceNotFound,
    InvalidConfig,
    NetworkError,
    PermissionDenied,
    ResourceUnavailable,
)
from lantern_net.models import WifiSecurity


logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InterfaceNotFound: 404,
    InvalidConfig: 400,
    EnterpriseWiFiError: 400,
    PermissionDenied: 403,
    ResourceUnavailable: 503,
}


def _allow_non_root() -> bool:
    return os.getenv("LANTERN_ALLOW_NON_ROOT") == "1"


def _status_for(exc: NetworkError) -> int:
    for kind, status in ERROR_STATUS.items():
        if isinstance(exc, kind):
            return status
    return 502


def _profile_payload(profile: WifiProfile) -> dict[str, Any]:
    return {
        "ssid": profile.ssid,
        "interface": profile.interface,
        "security": profile.security.value,
        "hidden": profile.hidden,
        "dhcp": profile.dhcp,
        "auto_connect": profile.auto_connect,
        "priority": profile.priority,
        "last_connected": profile.last_connected.isoformat() if profile.last_connected else None,
    }


def _split_dns(value: str) -> list[str]:
    return [entry.strip() for entry in value.replace(",", " ").split() if entry.strip()]


def create_app(engine: NetworkEngine | None = None) -> FastAPI:
    app = FastAPI(title="lantern")
    app.state.engine = engine

    def _engine() -> NetworkEngine:
        if app.state.engine is None:
            app.state.engine = NetworkEngine(load_settings())
        return app.state.engine

    @app.middleware("http")
    async def _root_middleware(request: Request, call_next):
        if not _allow_non_root() and os.geteuid() != 0:
            return JSONResponse(
                {"error": "lantern must run as root. Set LANTERN_ALLOW_NON_ROOT=1 for development.", "kind": "PermissionDenied"},
                status_code=503,
            )
        return await call_next(request)

    @app.exception_handler(NetworkError)
    async def _network_error(request: Request, exc: NetworkError):
        logger.info("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse({"error": str(exc), "kind": type(exc).__name__}, status_code=_status_for(exc))

    @app.get("/api/interfaces")
    def interfaces_api(refresh: bool = False):
        engine = _engine()
        interfaces = engine.refresh() if refresh or not engine.interfaces() else engine.interfaces()
        return JSONResponse([interface.to_dict() for interface in interfaces])

    @app.get("/api/wifi/networks")
    def networks_api(interface: str | None = None):
        networks = _engine().scan(interface)
        return JSONResponse([network.to_dict() for network in networks])

    @app.post("/api/wifi/scan")
    def scan_action(interface: str = Form("")):
        networks = _engine().scan(interface.strip() or None)
        return JSONResponse([network.to_dict() for network in networks])

    @app.post("/api/wifi/connect")
    def connect_action(
        ssid: str = Form(...),
        password: str = Form(""),
        interface: str = Form(""),
        security: str = Form(""),
        hidden: bool = Form(False),
        dhcp: bool = Form(True),
        ip: str = Form(""),
        gateway: str = Form(""),
        dns: str = Form(""),
    ):
        if security:
            resolved_security = WifiSecurity.parse(security)
        else:
            resolved_security = WifiSecurity.WPA2 if password else WifiSecurity.OPEN
        request = ConnectRequest(
            ssid=ssid,
            interface=interface.strip() or None,
            password=password or None,
            security=resolved_security,
            hidden=hidden,
            dhcp=dhcp,
            ip=ip.strip() or None,
            gateway=gateway.strip() or None,
            dns=_split_dns(dns),
        )
        profile = _engine().connect(request)
        return JSONResponse({"connected": True, "profile": _profile_payload(profile)})

    @app.post("/api/wifi/disconnect")
    def disconnect_action(interface: str = Form("")):
        _engine().disconnect(interface.strip() or None)
        return JSONResponse({"disconnected": True})

    @app.post("/api/wifi/auto-connect")
    def auto_connect_action(ssid: str = Form(...), interface: str = Form("")):
        enabled = _engine().toggle_auto_connect(ssid, interface.strip() or None)
        return JSONResponse({"ssid": ssid, "auto_connect": enabled})

    @app.post("/api/wifi/priority")
    def priority_action(ssid: str = Form(...), priority: int = Form(...), interface: str = Form("")):
        _engine().set_priority(ssid, interface.strip() or None, priority)
        return JSONResponse({"ssid": ssid, "priority": priority})

    @app.get("/api/wifi/profiles")
    def profiles_api():
        return JSONResponse([_profile_payload(profile) for profile in _engine().profiles()])

    @app.get("/api/wifi/details/{interface}")
    def details_api(interface: str):
        details = _engine().detailed_wifi_info(interface)
        if details is None:
            return JSONResponse({"connected": False, "interface": interface})
        return JSONResponse({"connected": True, **details.to_dict()})

    return app


app = create_app()

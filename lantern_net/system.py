from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence


logger = logging.getLogger(__name__)

EXTRA_BIN_PATHS = ("/usr/local/sbin", "/usr/sbin", "/sbin")
WIFI_NAME_PREFIXES = ("wlan", "wlp", "wlo", "wlx", "wifi")


@dataclass
class CommandResult:
    returncode: int
    stdout: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


Runner = Callable[..., CommandResult]


def _find_command(name: str) -> str | None:
    path_entries = [entry for entry in os.environ.get("PATH", "").split(os.pathsep) if entry]
    for extra in EXTRA_BIN_PATHS:
        if extra not in path_entries:
            path_entries.append(extra)
    return shutil.which(name, path=os.pathsep.join(path_entries))


def _run(command: Sequence[str], timeout: float | None = None, input_text: str | None = None) -> CommandResult:
    """Run a tool, folding stderr into stdout; never raises for launch failures."""
    executable = _find_command(command[0]) or command[0]
    argv = [executable, *command[1:]]
    logger.debug("running %s", " ".join(command))
    try:
        result = subprocess.run(
            argv,
            check=False,
            text=True,
            input=input_text,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
        )
        return CommandResult(returncode=result.returncode, stdout=result.stdout or "")
    except FileNotFoundError:
        return CommandResult(returncode=127, stdout=f"command not found: {command[0]}")
    except PermissionError:
        return CommandResult(returncode=126, stdout=f"permission denied: {command[0]}")
    except subprocess.TimeoutExpired:
        return CommandResult(returncode=124, stdout=f"timed out after {timeout}s: {command[0]}")


def describe_failure(result: CommandResult) -> str:
    text = result.stdout.strip()
    if text:
        return text.splitlines()[-1]
    return f"exit status {result.returncode}"


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError:
        return ""


def _write_text(path: Path, content: str, mode: int | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if mode is not None:
        os.chmod(path, mode)


def read_counter(path: Path) -> int:
    try:
        return int(_read_text(path).strip())
    except ValueError:
        return 0


def list_interfaces(sysfs_root: Path) -> list[str]:
    try:
        return sorted(os.listdir(sysfs_root))
    except FileNotFoundError:
        return []


def is_wireless(sysfs_root: Path, interface: str) -> bool:
    if not interface or interface == "lo":
        return False
    base = sysfs_root / interface
    return (base / "wireless").exists() or (base / "phy80211").exists()


def is_likely_wifi_name(interface: str) -> bool:
    return interface.startswith(WIFI_NAME_PREFIXES)

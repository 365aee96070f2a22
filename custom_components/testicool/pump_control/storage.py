# custom_components/testicool/pump_control/storage.py
from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from ..const import KNOWN_DEVICES_FILE, STORE_DIR_ENV, STORE_DIR_NAME
from .discovery import DiscoveredDevice

_LOGGER = logging.getLogger(__name__)


def store_dir() -> Path:
    override = os.environ.get(STORE_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / STORE_DIR_NAME


def _store_path(name: str) -> Path:
    return store_dir() / name


def device_key(param: str) -> str:
    return param.upper()


def load(name: str = KNOWN_DEVICES_FILE) -> Dict[str, Any]:
    path = _store_path(name)
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        _LOGGER.warning("Ignoring unreadable store %s", path)
        return {}


def save(data: Dict[str, Any], name: str = KNOWN_DEVICES_FILE) -> Path:
    path = _store_path(name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=3, sort_keys=True), encoding="utf-8")
    return path


# ────────────────────────────────────────────────────────────────
# {"known": { "<ADDRESS>": { "name": "Testicool_Prototype", "rssi": -61, "last_seen": "..." } }
# written by pumpctl list-devices, read when a command gets a device name
# instead of an address
# ────────────────────────────────────────────────────────────────


def remember_devices(devices: Iterable[DiscoveredDevice], now: Optional[datetime] = None) -> int:
    data = load()
    known = data.setdefault("known", {})
    stamp = (now or datetime.now()).isoformat(timespec="seconds")
    count = 0
    for device in devices:
        entry = known.setdefault(device_key(device.id), {})
        entry["name"] = device.name
        entry["rssi"] = device.rssi
        entry["last_seen"] = stamp
        count += 1
    if count:
        save(data)
    return count


def known_devices() -> Dict[str, Dict[str, Any]]:
    return load().get("known", {})


def resolve_alias(target: str) -> str:
    """Map a remembered device name to its address; anything else passes through."""
    for address, entry in known_devices().items():
        if entry.get("name") and entry["name"].lower() == target.lower():
            return address
    return target

"""
LXD instance manager — local VMs and containers through the ``lxc`` CLI.

Deleting is idempotent: an instance that is already gone counts as
deleted, so a destroy can be retried after a partial failure.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from deployer.adapters.base import InstanceInfo, InstanceManager, ToolAdapter

logger = logging.getLogger(__name__)

_MISSING_MARKERS = ("not found", "does not exist")


class LxdInstanceManager(ToolAdapter, InstanceManager):
    """Instance-manager role backed by ``lxc``."""

    tool = "lxd"
    default_binary = "lxc"

    def create(self, name: str, image: str, profile: str | None = None, vm: bool = False) -> None:
        args = ["init", image, name]
        if profile:
            args += ["-p", profile]
        if vm:
            args.append("--vm")
        logger.info("Creating instance %s from %s", name, image)
        self._run("create", args)

    def start(self, name: str) -> None:
        self._run("start", ["start", name])

    def stop(self, name: str, force: bool = False) -> None:
        args = ["stop", name]
        if force:
            args.append("--force")
        self._run("stop", args)

    def delete(self, name: str) -> None:
        result = self._invoke(["delete", name, "--force"])
        if result.ok:
            logger.info("Deleted instance %s", name)
            return
        if _is_missing(result.stderr):
            logger.info("Instance %s already absent", name)
            return
        raise self._error("delete", result)

    def info(self, name: str) -> InstanceInfo | None:
        result = self._run("info", ["list", name, "--format=json"])
        try:
            instances = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise self._error("info", result, detail=f"invalid JSON from lxc list: {e}") from e
        if not isinstance(instances, list):
            raise self._error("info", result, detail="expected a JSON array from lxc list")

        # `lxc list <name>` filters by prefix
        for instance in instances:
            if isinstance(instance, dict) and instance.get("name") == name:
                return InstanceInfo(
                    name=name,
                    ip_address=extract_ipv4(instance),
                    image=_image_of(instance),
                    status=str(instance.get("status", "")),
                )
        return None


def extract_ipv4(instance: dict[str, Any]) -> str | None:
    """First IPv4 address on any non-loopback interface, or None."""
    network = (instance.get("state") or {}).get("network") or {}
    for iface, data in network.items():
        if iface == "lo":
            continue
        for addr in (data or {}).get("addresses") or []:
            if addr.get("family") == "inet" and addr.get("address"):
                return addr["address"]
    return None


def _image_of(instance: dict[str, Any]) -> str:
    config = instance.get("config") or {}
    return str(config.get("image.description") or config.get("volatile.base_image") or "")


def _is_missing(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _MISSING_MARKERS)

"""
OpenTofu provisioner — infrastructure lifecycle of one working directory.

Every call runs ``tofu`` inside the environment's tofu working directory
(``build/<name>/tofu``). Variables are handed over through a JSON var
file written with mode 0600, because they may carry provider tokens.
The saved plan is consumed by ``apply``; ``destroy`` reuses the var file.

No internal retries: the handlers decide what is worth retrying.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from deployer.adapters.base import InstanceInfo, PlanSummary, Provisioner, ToolAdapter
from deployer.core.errors import LaunchFailed

logger = logging.getLogger(__name__)

TFVARS_FILE = "deployer.tfvars.json"
PLAN_FILE = "deployer.tfplan"
INSTANCE_OUTPUT = "instance_info"

_COMMON_ARGS = ("-input=false", "-no-color")
_PLAN_RE = re.compile(r"Plan:\s+(\d+) to add,\s+(\d+) to change,\s+(\d+) to destroy")


class OpenTofuProvisioner(ToolAdapter, Provisioner):
    """Provisioner role backed by the ``tofu`` CLI."""

    tool = "tofu"
    default_binary = "tofu"

    def init(self, workdir: Path) -> None:
        logger.info("tofu init in %s", workdir)
        self._run("init", ["init", *_COMMON_ARGS], working_dir=workdir)

    def plan(self, workdir: Path, variables: Mapping[str, Any]) -> PlanSummary:
        self._require_dir(workdir)
        write_var_file(workdir / TFVARS_FILE, variables)

        result = self._run(
            "plan",
            ["plan", *_COMMON_ARGS, f"-var-file={TFVARS_FILE}", f"-out={PLAN_FILE}"],
            working_dir=workdir,
        )
        summary = parse_plan_summary(result.stdout)
        logger.info(
            "tofu plan: %d to add, %d to change, %d to destroy",
            summary.add,
            summary.change,
            summary.destroy,
        )
        return summary

    def apply(self, workdir: Path) -> None:
        plan_file = workdir / PLAN_FILE
        if plan_file.is_file():
            args = ["apply", *_COMMON_ARGS, "-auto-approve", PLAN_FILE]
        else:
            args = ["apply", *_COMMON_ARGS, "-auto-approve", *self._var_file_args(workdir)]

        logger.info("tofu apply in %s", workdir)
        self._run("apply", args, working_dir=workdir)
        # A saved plan is stale once applied
        plan_file.unlink(missing_ok=True)

    def destroy(self, workdir: Path) -> None:
        logger.info("tofu destroy in %s", workdir)
        self._run(
            "destroy",
            ["destroy", *_COMMON_ARGS, "-auto-approve", *self._var_file_args(workdir)],
            working_dir=workdir,
        )

    def output(self, workdir: Path) -> InstanceInfo:
        result = self._run("output", ["output", "-no-color", "-json"], working_dir=workdir)
        try:
            return parse_instance_info(result.stdout)
        except ValueError as e:
            raise self._error("output", result, detail=str(e)) from e

    # ── Helpers ─────────────────────────────────────────────────

    def _require_dir(self, workdir: Path) -> None:
        if not workdir.is_dir():
            raise LaunchFailed(self.binary, f"working directory does not exist: {workdir}")

    @staticmethod
    def _var_file_args(workdir: Path) -> list[str]:
        if (workdir / TFVARS_FILE).is_file():
            return [f"-var-file={TFVARS_FILE}"]
        return []


def write_var_file(path: Path, variables: Mapping[str, Any]) -> None:
    """Write variables as JSON, readable by the owner only."""
    content = json.dumps(dict(variables), indent=2, sort_keys=True) + "\n"
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with open(fd, "w", encoding="utf-8") as f:
        f.write(content)
    # O_CREAT mode does not apply to a file that already existed
    os.chmod(path, 0o600)


def parse_plan_summary(stdout: str) -> PlanSummary:
    """Extract resource counts from ``tofu plan`` output."""
    match = _PLAN_RE.search(stdout)
    if match is None:
        # "No changes. Your infrastructure matches the configuration."
        return PlanSummary()
    add, change, destroy = (int(n) for n in match.groups())
    return PlanSummary(add=add, change=change, destroy=destroy)


def parse_instance_info(stdout: str) -> InstanceInfo:
    """Parse the ``instance_info`` output of ``tofu output -json``.

    Raises:
        ValueError: The JSON is malformed or a field is missing.
    """
    try:
        outputs = json.loads(stdout)
    except json.JSONDecodeError as e:
        raise ValueError(f"output is not valid JSON: {e}") from e

    if not isinstance(outputs, dict):
        raise ValueError("expected a JSON object of outputs")

    value = (outputs.get(INSTANCE_OUTPUT) or {}).get("value")
    if not isinstance(value, dict):
        raise ValueError(f"'{INSTANCE_OUTPUT}' output not found")

    fields = {}
    for key in ("name", "ip_address", "image", "status"):
        item = value.get(key)
        if not isinstance(item, str):
            raise ValueError(f"'{INSTANCE_OUTPUT}.{key}' is missing or not a string")
        fields[key] = item

    try:
        ipaddress.ip_address(fields["ip_address"])
    except ValueError:
        raise ValueError(f"'{INSTANCE_OUTPUT}.ip_address' is not an IP address: {fields['ip_address']!r}") from None

    return InstanceInfo(**fields)

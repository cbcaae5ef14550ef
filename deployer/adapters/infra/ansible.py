"""
Ansible configuration manager — run playbooks against provisioned hosts.

Playbooks run from their own directory (so relative role and file paths
resolve) with host key checking disabled, since instances are new and
their keys unknown. Extra variables go through a temporary JSON file
rather than the command line, which keeps them out of process listings.
"""

from __future__ import annotations

import json
import logging
import re
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from deployer.adapters.base import ConfigurationManager, HostRecap, ToolAdapter
from deployer.core.errors import AdapterError, stderr_excerpt

logger = logging.getLogger(__name__)

_RECAP_HEADER = "PLAY RECAP"
_RECAP_LINE_RE = re.compile(r"^(?P<host>\S+)\s+:\s+(?P<counts>(?:\w+=\d+\s*)+)$")
_COUNT_RE = re.compile(r"(\w+)=(\d+)")


class AnsibleConfigurationManager(ToolAdapter, ConfigurationManager):
    """Configuration-manager role backed by ``ansible-playbook``."""

    tool = "ansible"
    default_binary = "ansible-playbook"

    def run_playbook(
        self,
        inventory: Path,
        playbook: Path,
        extra_vars: Mapping[str, Any] | None = None,
    ) -> dict[str, HostRecap]:
        inventory = inventory.resolve()
        playbook = playbook.resolve()
        args = ["-i", str(inventory), playbook.name]

        vars_path: Path | None = None
        if extra_vars:
            fd, tmp = tempfile.mkstemp(prefix="deployer-vars-", suffix=".json")
            vars_path = Path(tmp)
            with open(fd, "w", encoding="utf-8") as f:
                json.dump(dict(extra_vars), f)
            args += ["-e", f"@{vars_path}"]

        logger.info("Running playbook %s", playbook.name)
        try:
            result = self._invoke(
                args,
                working_dir=playbook.parent,
                env_overrides={"ANSIBLE_HOST_KEY_CHECKING": "False"},
            )
        finally:
            if vars_path is not None:
                vars_path.unlink(missing_ok=True)

        recap = parse_play_recap(result.stdout)

        if not result.ok:
            failed = sorted(host for host, r in recap.items() if not r.succeeded)
            # Ansible reports task failures on stdout
            excerpt = stderr_excerpt(result.stderr) or stderr_excerpt(result.stdout)
            raise AdapterError(
                tool=self.tool,
                operation="run_playbook",
                exit_code=result.exit_status,
                stderr_excerpt=excerpt,
                failed_hosts=failed,
                detail=f"playbook {playbook.name}",
            )

        logger.info("Playbook %s finished on %d host(s)", playbook.name, len(recap))
        return recap


def parse_play_recap(stdout: str) -> dict[str, HostRecap]:
    """Parse every host line under ``PLAY RECAP``.

    A playbook that runs several plays prints one recap at the end;
    hosts that appear twice keep the last line.
    """
    recap: dict[str, HostRecap] = {}
    in_recap = False

    for line in stdout.splitlines():
        if line.startswith(_RECAP_HEADER):
            in_recap = True
            continue
        if not in_recap:
            continue

        match = _RECAP_LINE_RE.match(line.strip())
        if match is None:
            if line.strip():
                in_recap = False
            continue

        counts = {k: int(v) for k, v in _COUNT_RE.findall(match.group("counts"))}
        fields = {k: v for k, v in counts.items() if k in HostRecap.__dataclass_fields__}
        host = match.group("host")
        recap[host] = HostRecap(host=host, **fields)

    return recap

"""Shell provisioning scripts handed to newly started machines."""
from __future__ import annotations

import gzip

from ...environs.machineconfig import MachineConfig, MachineConfigError, machine_agent_config
from ...utils import sh_quote

FILE_SCHEME = "file://"


def tools_commands(mcfg: MachineConfig) -> list[str]:
    """Return commands that fetch and unpack the machine's tools."""
    if mcfg.tools is None:
        raise MachineConfigError("machine configuration has no tools")
    tools_dir = mcfg.data_dir / "tools" / str(mcfg.tools.binary)
    target = sh_quote(str(tools_dir))
    archive_path = sh_quote(str(tools_dir / "tools.tar.gz"))
    url = mcfg.tools.url
    commands = [f"mkdir -p {target}"]
    if url.startswith(FILE_SCHEME):
        commands.append(f"cp {sh_quote(url[len(FILE_SCHEME):])} {archive_path}")
    else:
        commands.append(f"wget --no-verbose -O {archive_path} {sh_quote(url)}")
    if mcfg.tools.sha256:
        check = f"{mcfg.tools.sha256}  {tools_dir / 'tools.tar.gz'}"
        commands.append(f"printf '%s\\n' {sh_quote(check)} | sha256sum -c -")
    commands.append(f"tar zxf {archive_path} -C {target}")
    commands.append(f"rm {archive_path}")
    return commands


def provisioning_script(mcfg: MachineConfig, *extra: str) -> str:
    """Return a bash script installing tools and the agent configuration."""
    lines = ["#!/bin/bash", "set -xe"]
    lines.extend(tools_commands(mcfg))
    lines.extend(machine_agent_config(mcfg).write_commands())
    lines.extend(extra)
    return "\n".join(lines)


def compose_user_data(mcfg: MachineConfig, *extra: str) -> bytes:
    """Return the gzipped provisioning script for a cloud instance."""
    return gzip.compress(provisioning_script(mcfg, *extra).encode("utf-8"))


__all__ = ["compose_user_data", "provisioning_script", "tools_commands"]

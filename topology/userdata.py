import re
from importlib import resources
from typing import Mapping, Sequence

from topology.errors import UnresolvedInstanceRefError
from topology.models import ClusterInstanceInput, NodeRole

INSTALL_SCRIPT = "install.sh"
CONTROL_PLANE_INIT_SCRIPT = "init.sh"

_INSTANCE_REF = re.compile(r"\$\{([^}]+)\.InstanceId\}")


def load_user_data_asset(name: str) -> list[str]:
    """Read a packaged boot script as a list of lines."""
    text = resources.files("topology").joinpath("scripts", name).read_text(encoding="utf-8")
    return text.rstrip("\n").split("\n")


def instance_id_ref(logical_name: str) -> str:
    """Placeholder for an instance ID that the provisioning backend assigns later."""
    return f"${{{logical_name}.InstanceId}}"


def instance_refs(lines: Sequence[str]) -> list[str]:
    """Instance names referenced by placeholders, in order of appearance."""
    return [m.group(1) for line in lines for m in _INSTANCE_REF.finditer(line)]


def check_instance_refs(instance_name: str, lines: Sequence[str], known: Sequence[str]) -> None:
    """Raise if the boot script of instance_name references an instance outside known."""
    for ref in instance_refs(lines):
        if ref not in known:
            raise UnresolvedInstanceRefError(instance_name, ref)


def render_instance_refs(
    instance_name: str,
    lines: Sequence[str],
    instance_ids: Mapping[str, str],
) -> list[str]:
    """Replace instance ID placeholders with real IDs.

    Raises:
        UnresolvedInstanceRefError: if a placeholder names an instance without a known ID.
    """
    check_instance_refs(instance_name, lines, list(instance_ids))
    return [_INSTANCE_REF.sub(lambda m: instance_ids[m.group(1)], line) for line in lines]


def render_user_data(lines: Sequence[str]) -> str:
    """Final shell script handed to the instance."""
    return "\n".join(["#!/bin/bash", *lines]) + "\n"


def join_command(worker_ref: str) -> str:
    """SSM command, run on the control plane, that makes one worker join the cluster."""
    return (
        f'aws ssm send-command --instance-ids "{worker_ref}" '
        '--document-name "AWS-RunShellScript" '
        '--comment "Join worker to cluster" '
        '--parameters "commands=[\\"$(kubeadm token create --print-join-command)\\"]"'
    )


class UserDataComposer:
    """Orders boot commands: prepend, base, role extras, append."""

    def __init__(self, control_plane_init: Sequence[str]):
        self._control_plane_init = tuple(control_plane_init)

    def extra_commands(
        self,
        role: NodeRole,
        worker_instance_refs: Sequence[str] = (),
    ) -> list[str]:
        if role is NodeRole.WORKER:
            return []
        return [*self._control_plane_init, *(join_command(ref) for ref in worker_instance_refs)]

    def compose(
        self,
        role: NodeRole,
        base_commands: Sequence[str],
        instance_spec: ClusterInstanceInput,
        worker_instance_refs: Sequence[str] = (),
    ) -> list[str]:
        return [
            *instance_spec.prepend_user_data,
            *base_commands,
            *self.extra_commands(role, worker_instance_refs),
            *instance_spec.append_user_data,
        ]

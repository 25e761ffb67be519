import re

from topology.models import NodeRole, OutputDescriptor, ResourceGraph


def normalize_name(name: str) -> str:
    """`my-cluster` -> `MyCluster`: capitalize each `-`/`_` segment and join."""
    return "".join(segment[:1].upper() + segment[1:] for segment in re.split(r"[-_]", name) if segment)


def export_outputs(graph: ResourceGraph) -> tuple[OutputDescriptor, ...]:
    """Named identifiers published for downstream consumers."""
    prefix = normalize_name(graph.cluster_name)

    outputs = [OutputDescriptor(key="CtrlPlaneInstanceId", resource=graph.control_plane.logical_name)]
    for index, worker in enumerate(graph.workers, start=1):
        outputs.append(OutputDescriptor(key=f"Worker{index}InstanceId", resource=worker.logical_name))

    outputs.append(
        OutputDescriptor(
            key=f"{prefix}ControlPlaneSecurityGroupId",
            resource=graph.security_groups[NodeRole.CONTROL_PLANE].logical_name,
        )
    )
    outputs.append(
        OutputDescriptor(
            key=f"{prefix}WorkerSecurityGroupId",
            resource=graph.security_groups[NodeRole.WORKER].logical_name,
        )
    )
    return tuple(outputs)

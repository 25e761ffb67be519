import logging
from typing import Optional, Sequence

from topology.instances import InstanceSpecResolver, format_resource_name, profile_name
from topology.models import (
    ClusterSpec,
    DependencyEdge,
    IamRoleDescriptor,
    InstanceDescriptor,
    InstanceProfileDescriptor,
    NodeRole,
    ResourceGraph,
    SecurityGroupDescriptor,
)
from topology.network import NetworkPolicyDeriver
from topology.outputs import export_outputs
from topology.userdata import (
    CONTROL_PLANE_INIT_SCRIPT,
    INSTALL_SCRIPT,
    UserDataComposer,
    check_instance_refs,
    instance_id_ref,
    load_user_data_asset,
)
from topology.validation import validate

logger = logging.getLogger(__name__)

INSTANCE_MANAGED_POLICIES = (
    "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore",
    "arn:aws:iam::aws:policy/AmazonEC2FullAccess",
)

SEND_COMMAND_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Sid": "SendCommand",
            "Effect": "Allow",
            "Action": ["ssm:SendCommand"],
            "Resource": "*",
        }
    ],
}


def _security_group_description(role: NodeRole) -> str:
    if role is NodeRole.CONTROL_PLANE:
        return "SG for K8s Control Plane"
    return "SG for Worker Node"


class TopologyBuilder:
    """Turns a ClusterSpec into a ResourceGraph.

    Each build is a pure function of its spec: the builder keeps no state
    between calls and performs no I/O once the boot scripts are loaded.
    """

    def __init__(
        self,
        network: Optional[NetworkPolicyDeriver] = None,
        instances: Optional[InstanceSpecResolver] = None,
        composer: Optional[UserDataComposer] = None,
        install_script: Optional[Sequence[str]] = None,
    ):
        self._network = network or NetworkPolicyDeriver()
        self._instances = instances or InstanceSpecResolver()
        self._composer = composer or UserDataComposer(load_user_data_asset(CONTROL_PLANE_INIT_SCRIPT))
        self._install_script = tuple(
            install_script if install_script is not None else load_user_data_asset(INSTALL_SCRIPT)
        )

    @staticmethod
    def security_group_name(spec: ClusterSpec, role: NodeRole) -> str:
        suffix = "ctrl-plane-sg" if role is NodeRole.CONTROL_PLANE else "worker-node-sg"
        return f"{spec.cluster_name}-{suffix}"

    def build_security_groups(self, spec: ClusterSpec) -> dict[NodeRole, SecurityGroupDescriptor]:
        groups: dict[NodeRole, SecurityGroupDescriptor] = {}
        for role in (NodeRole.CONTROL_PLANE, NodeRole.WORKER):
            logical_name = self.security_group_name(spec, role)
            groups[role] = SecurityGroupDescriptor(
                logical_name=logical_name,
                group_name=format_resource_name(logical_name, spec.name_prefix, spec.env_tag),
                role=role,
                description=_security_group_description(role),
                ingress_rules=self._network.derive_rules(role, spec),
            )
        return groups

    def build_iam_role(self, spec: ClusterSpec) -> IamRoleDescriptor:
        """New instance role, or the external role extended with the same permissions."""
        logical_name = f"{spec.cluster_name}-ec2-role"
        if spec.role_arn:
            role_name = spec.role_arn.split("/")[-1]
        else:
            role_name = format_resource_name(logical_name, spec.name_prefix, spec.env_tag)

        return IamRoleDescriptor(
            logical_name=logical_name,
            role_name=role_name,
            external_role_arn=spec.role_arn,
            managed_policy_arns=INSTANCE_MANAGED_POLICIES,
            inline_policies={"SsmPolicy": SEND_COMMAND_POLICY},
        )

    def build_workers(
        self,
        spec: ClusterSpec,
        security_group: SecurityGroupDescriptor,
    ) -> list[InstanceDescriptor]:
        workers: list[InstanceDescriptor] = []
        user_data = self._composer.compose(NodeRole.WORKER, self._install_script, spec.worker_instance)

        for replica in range(1, spec.worker_nodes_count + 1):
            logical_name = f"{spec.cluster_name}-worker-{replica}"
            check_instance_refs(logical_name, user_data, ())
            workers.append(
                self._instances.resolve(
                    NodeRole.WORKER,
                    spec,
                    logical_name=logical_name,
                    security_group=security_group.logical_name,
                    user_data=user_data,
                    replica=replica,
                )
            )
        return workers

    def build_control_plane(
        self,
        spec: ClusterSpec,
        security_group: SecurityGroupDescriptor,
        workers: Sequence[InstanceDescriptor],
    ) -> InstanceDescriptor:
        """Composed after the workers: its boot script joins each of them by instance ID."""
        worker_names = [w.logical_name for w in workers]
        logical_name = f"{spec.cluster_name}-ctrl-plane"
        user_data = self._composer.compose(
            NodeRole.CONTROL_PLANE,
            self._install_script,
            spec.control_plane_instance,
            worker_instance_refs=[instance_id_ref(n) for n in worker_names],
        )
        check_instance_refs(logical_name, user_data, worker_names)
        return self._instances.resolve(
            NodeRole.CONTROL_PLANE,
            spec,
            logical_name=logical_name,
            security_group=security_group.logical_name,
            user_data=user_data,
            depends_on=worker_names,
        )

    def build(self, spec: ClusterSpec) -> ResourceGraph:
        """Build the full resource graph for a spec.

        Raises:
            ClusterValidationError: if the spec is rejected.
            DuplicateDeviceNameError: if an instance reuses a volume device name.
            UnresolvedInstanceRefError: if user data references an instance it cannot depend on.
        """
        validate(spec)
        logger.info(
            "Building topology for cluster %s with %d worker(s)",
            spec.cluster_name,
            spec.worker_nodes_count,
        )

        security_groups = self.build_security_groups(spec)
        iam_role = self.build_iam_role(spec)

        workers = self.build_workers(spec, security_groups[NodeRole.WORKER])
        control_plane = self.build_control_plane(spec, security_groups[NodeRole.CONTROL_PLANE], workers)

        edges = tuple(
            DependencyEdge(before=w.logical_name, after=control_plane.logical_name) for w in workers
        )
        profiles = tuple(
            InstanceProfileDescriptor(logical_name=profile_name(i.logical_name), role=iam_role.logical_name)
            for i in (*workers, control_plane)
        )

        graph = ResourceGraph(
            cluster_name=spec.cluster_name,
            security_groups=security_groups,
            iam_role=iam_role,
            instance_profiles=profiles,
            workers=tuple(workers),
            control_plane=control_plane,
            edges=edges,
        )
        graph = graph.model_copy(update={"outputs": export_outputs(graph)})

        logger.debug(
            "Cluster %s resolved: %d instance(s), %d dependency edge(s)",
            spec.cluster_name,
            len(graph.instances),
            len(edges),
        )
        return graph

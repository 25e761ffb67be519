from typing import Sequence

from topology.models import (
    ANY_IPV4_CIDR,
    ClusterSpec,
    IngressRuleInput,
    NodeRole,
    PeerType,
    ResolvedIngressRule,
)

# Inclusive (from, to) port ranges. See
# https://kubernetes.io/docs/reference/networking/ports-and-protocols/
CONTROL_PLANE_PORTS: tuple[tuple[int, int], ...] = (
    (6443, 6443),  # kube-apiserver
    (2379, 2380),  # etcd
    (10250, 10250),  # kubelet
    (10259, 10259),  # kube-scheduler
    (10257, 10257),  # kube-controller-manager
)

WORKER_PORTS: tuple[tuple[int, int], ...] = (
    (10250, 10250),  # kubelet
    (10256, 10256),  # kube-proxy
    (30000, 32767),  # NodePort services
)

HTTPS_PORT = 443


def resolve_custom_rule(rule: IngressRuleInput) -> ResolvedIngressRule:
    """Turn a user-declared ingress rule into a single-port or range rule."""
    lower = rule.port.lower_range
    upper = rule.port.higher_range if rule.port.higher_range is not None else lower

    if rule.peer_type == PeerType.SECURITY_GROUP:
        return ResolvedIngressRule(
            from_port=lower,
            to_port=upper,
            source_security_group_id=rule.peer,
            description=rule.description,
        )
    return ResolvedIngressRule(
        from_port=lower,
        to_port=upper,
        cidr_block=ANY_IPV4_CIDR,
        description=rule.description,
    )


class NetworkPolicyDeriver:
    """Derives the ingress rules of each role's security group.

    Baseline rules model the control-plane/worker trust relationship and are
    always present; custom rules from the spec are appended after them.
    """

    def __init__(
        self,
        control_plane_ports: Sequence[tuple[int, int]] = CONTROL_PLANE_PORTS,
        worker_ports: Sequence[tuple[int, int]] = WORKER_PORTS,
    ):
        self._control_plane_ports = tuple(control_plane_ports)
        self._worker_ports = tuple(worker_ports)

    def baseline_rules(self, role: NodeRole) -> list[ResolvedIngressRule]:
        rules: list[ResolvedIngressRule] = []

        if role is NodeRole.CONTROL_PLANE:
            for from_port, to_port in self._control_plane_ports:
                rules.append(
                    ResolvedIngressRule(
                        from_port=from_port,
                        to_port=to_port,
                        source_role=NodeRole.WORKER,
                        description="Allow worker nodes to reach control plane",
                    )
                )
            return rules

        for from_port, to_port in self._worker_ports:
            rules.append(
                ResolvedIngressRule(
                    from_port=from_port,
                    to_port=to_port,
                    source_role=NodeRole.CONTROL_PLANE,
                    description="Allow control plane to reach worker nodes",
                )
            )
            rules.append(
                ResolvedIngressRule(
                    from_port=from_port,
                    to_port=to_port,
                    source_role=NodeRole.WORKER,
                    description="Allow worker to worker traffic",
                )
            )
        return rules

    def derive_rules(self, role: NodeRole, spec: ClusterSpec) -> tuple[ResolvedIngressRule, ...]:
        """Baseline rules, then public HTTPS when requested, then custom rules in declared order."""
        rules = self.baseline_rules(role)

        if spec.associate_public_ip_address:
            rules.append(
                ResolvedIngressRule(
                    from_port=HTTPS_PORT,
                    to_port=HTTPS_PORT,
                    cidr_block=ANY_IPV4_CIDR,
                    description="Allow HTTPS from anywhere",
                )
            )

        rules.extend(resolve_custom_rule(r) for r in spec.instance_spec(role).ingress_rules)
        return tuple(rules)

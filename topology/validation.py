from topology.errors import ClusterValidationError
from topology.models import (
    ClusterSpec,
    NodeRole,
    PeerType,
    ValidationErrorDetail,
)

MUTUALLY_EXCLUSIVE_PLACEMENT = "MutuallyExclusivePlacement"
MISSING_PEER_REFERENCE = "MissingPeerReference"
INVALID_PORT_RANGE = "InvalidPortRange"


def _role_field(role: NodeRole) -> str:
    if role is NodeRole.CONTROL_PLANE:
        return "control_plane_instance"
    return "worker_instance"


def validate_placement(spec: ClusterSpec) -> list[ValidationErrorDetail]:
    """subnets and subnet_type cannot both be set."""
    if spec.subnets and spec.subnet_type is not None:
        return [
            ValidationErrorDetail(
                field="subnets",
                code=MUTUALLY_EXCLUSIVE_PLACEMENT,
                message=(
                    "Attributes subnets and subnetType are mutually exclusive. "
                    "Please remove one of the attributes from the cluster spec"
                ),
                value=spec.subnet_type.value,
            )
        ]
    return []


def validate_ingress_rules(spec: ClusterSpec, role: NodeRole) -> list[ValidationErrorDetail]:
    """Check custom ingress rules of one role.

    A SecurityGroup peer must name the group; a port range must not be inverted.
    """
    errors: list[ValidationErrorDetail] = []
    field = _role_field(role)

    for i, rule in enumerate(spec.instance_spec(role).ingress_rules):
        if rule.peer_type == PeerType.SECURITY_GROUP and not (rule.peer or "").strip():
            errors.append(
                ValidationErrorDetail(
                    field=f"{field}.ingress_rules[{i}].peer",
                    code=MISSING_PEER_REFERENCE,
                    message=(
                        "attribute 'peer' is mandatory for an ingress rule when 'peerType' "
                        f"is defined as 'SecurityGroup' for {role.label} node"
                    ),
                )
            )

        higher = rule.port.higher_range
        if higher is not None and higher < rule.port.lower_range:
            errors.append(
                ValidationErrorDetail(
                    field=f"{field}.ingress_rules[{i}].port.higher_range",
                    code=INVALID_PORT_RANGE,
                    message=(
                        f"port range {rule.port.lower_range}-{higher} is inverted "
                        f"for {role.label} node"
                    ),
                    value=str(higher),
                )
            )

    return errors


def validate(spec: ClusterSpec) -> None:
    """Validate a cluster spec before any resource is derived.

    All rules are evaluated and reported together; placement errors always
    come first.

    Raises:
        ClusterValidationError: if any rule is violated.
    """
    errors: list[ValidationErrorDetail] = []
    errors.extend(validate_placement(spec))
    errors.extend(validate_ingress_rules(spec, NodeRole.CONTROL_PLANE))
    errors.extend(validate_ingress_rules(spec, NodeRole.WORKER))

    if errors:
        raise ClusterValidationError(errors)

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

PRIMARY_DEVICE_NAME = "/dev/xvda"
DEFAULT_VOLUME_SIZE_GB = 20
ANY_IPV4_CIDR = "0.0.0.0/0"


class NodeRole(str, Enum):
    """Logical category of a cluster node."""

    CONTROL_PLANE = "control_plane"
    WORKER = "worker"

    @property
    def label(self) -> str:
        return "ControlPlane" if self is NodeRole.CONTROL_PLANE else "Worker"


class SubnetType(str, Enum):
    """Subnet selector used when no explicit subnets are given."""

    PUBLIC = "public"
    PRIVATE_WITH_EGRESS = "private_with_egress"
    PRIVATE_ISOLATED = "private_isolated"


class PeerType(str, Enum):
    """Source of an ingress rule."""

    ANY_IPV4 = "AnyIpv4"
    SECURITY_GROUP = "SecurityGroup"


class VolumeType(str, Enum):
    """EBS volume type."""

    STANDARD = "standard"
    IO1 = "io1"
    IO2 = "io2"
    GP2 = "gp2"
    GP3 = "gp3"
    ST1 = "st1"
    SC1 = "sc1"


class InstanceSize(str, Enum):
    """EC2 instance size suffix."""

    NANO = "nano"
    MICRO = "micro"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    XLARGE = "xlarge"
    XLARGE2 = "2xlarge"
    XLARGE4 = "4xlarge"
    XLARGE8 = "8xlarge"
    XLARGE12 = "12xlarge"
    XLARGE16 = "16xlarge"


class BaseImage(str, Enum):
    """Machine image names looked up when no AMI parameter is configured."""

    UBUNTU = "ubuntu/images/hvm-ssd-gp3/ubuntu-noble-24.04-arm64-server-20250305"


# =============================================================================
# Input models
# =============================================================================


class PortInput(BaseModel):
    """Single port, or an inclusive range when higher_range is set."""

    model_config = ConfigDict(frozen=True)

    lower_range: int = Field(..., ge=0, le=65535)
    higher_range: Optional[int] = Field(default=None, ge=0, le=65535)


class IngressRuleInput(BaseModel):
    """Custom inbound rule, added on top of the standard Kubernetes ports."""

    model_config = ConfigDict(frozen=True)

    port: PortInput
    peer_type: PeerType
    peer: Optional[str] = Field(
        default=None,
        description="Security group ID, mandatory when peer_type is SecurityGroup",
    )
    description: Optional[str] = None


class PrimaryVolumeInput(BaseModel):
    """Overrides for the root volume. The device name is always reserved."""

    model_config = ConfigDict(frozen=True)

    volume_size_gb: int = Field(default=DEFAULT_VOLUME_SIZE_GB, ge=1)
    volume_type: VolumeType = VolumeType.GP3
    delete_on_termination: bool = True


class VolumeInput(PrimaryVolumeInput):
    """Secondary EBS volume."""

    device_name: str = Field(..., min_length=1, description="e.g. /dev/xvdb")


class ClusterInstanceInput(BaseModel):
    """Instance shape for one node role (control plane or worker)."""

    model_config = ConfigDict(frozen=True)

    instance_class: str = Field(default="t4g", pattern=r"^[a-z][a-z0-9\-]*$")
    instance_size: InstanceSize = InstanceSize.MEDIUM
    primary_volume: Optional[PrimaryVolumeInput] = None
    secondary_volumes: list[VolumeInput] = Field(default_factory=list)
    ingress_rules: list[IngressRuleInput] = Field(default_factory=list)
    prepend_user_data: list[str] = Field(default_factory=list)
    append_user_data: list[str] = Field(default_factory=list)


class SubnetInput(BaseModel):
    """An existing subnet selected by ID."""

    model_config = ConfigDict(frozen=True)

    subnet_id: str = Field(..., min_length=1)
    availability_zone: Optional[str] = None


class ClusterSpec(BaseModel):
    """Declarative cluster specification.

    subnet_type and subnets are mutually exclusive; this is checked by
    topology.validation rather than at construction so that all problems
    are reported together.
    """

    model_config = ConfigDict(frozen=True)

    vpc_id: str = Field(..., min_length=1)
    subnet_type: Optional[SubnetType] = None
    subnets: Optional[list[SubnetInput]] = None
    associate_public_ip_address: bool = False
    key_pair_name: Optional[str] = None
    cluster_name: str = Field(default="k8s", pattern=r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")
    ami_param_name: Optional[str] = None
    role_arn: Optional[str] = Field(
        default=None,
        pattern=r"^arn:aws[a-z\-]*:iam::\d{12}:role/.+$",
    )
    control_plane_instance: ClusterInstanceInput = Field(default_factory=ClusterInstanceInput)
    worker_instance: ClusterInstanceInput = Field(default_factory=ClusterInstanceInput)
    worker_nodes_count: int = Field(default=1, ge=0)
    name_prefix: Optional[str] = None
    env_tag: Optional[str] = None
    tags: dict[str, str] = Field(default_factory=dict)

    def instance_spec(self, role: NodeRole) -> ClusterInstanceInput:
        if role is NodeRole.CONTROL_PLANE:
            return self.control_plane_instance
        return self.worker_instance


# =============================================================================
# Resolved graph
# =============================================================================


class ResolvedIngressRule(BaseModel):
    """Inbound rule with exactly one source: a CIDR, a cluster role's group or an external group."""

    model_config = ConfigDict(frozen=True)

    from_port: int
    to_port: int
    protocol: str = "tcp"
    cidr_block: Optional[str] = None
    source_role: Optional[NodeRole] = None
    source_security_group_id: Optional[str] = None
    description: Optional[str] = None


class SecurityGroupDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    logical_name: str
    group_name: str
    role: NodeRole
    description: str
    ingress_rules: tuple[ResolvedIngressRule, ...] = ()


class IamRoleDescriptor(BaseModel):
    """Instance role: either created by the cluster or an existing role extended in place."""

    model_config = ConfigDict(frozen=True)

    logical_name: str
    role_name: str
    external_role_arn: Optional[str] = None
    service_principal: str = "ec2.amazonaws.com"
    managed_policy_arns: tuple[str, ...] = ()
    inline_policies: dict[str, dict] = Field(default_factory=dict)

    @property
    def is_external(self) -> bool:
        return self.external_role_arn is not None


class InstanceProfileDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    logical_name: str
    role: str


class VolumeDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    device_name: str
    volume_size_gb: int
    volume_type: VolumeType
    delete_on_termination: bool


class Placement(BaseModel):
    model_config = ConfigDict(frozen=True)

    subnet_ids: tuple[str, ...] = ()
    subnet_type: Optional[SubnetType] = None
    associate_public_ip_address: bool = False


class MachineImage(BaseModel):
    """Either an SSM parameter holding an AMI ID, or an image name to look up."""

    model_config = ConfigDict(frozen=True)

    ssm_parameter_name: Optional[str] = None
    image_name: Optional[str] = None


class InstanceDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    logical_name: str
    name: str
    role: NodeRole
    replica: Optional[int] = None
    instance_type: str
    volumes: tuple[VolumeDescriptor, ...]
    placement: Placement
    machine_image: MachineImage
    security_group: str
    instance_profile: str
    key_pair_name: Optional[str] = None
    user_data: tuple[str, ...] = ()
    require_imdsv2: bool = True
    depends_on: tuple[str, ...] = ()


class DependencyEdge(BaseModel):
    """`before` must exist before `after` is created."""

    model_config = ConfigDict(frozen=True)

    before: str
    after: str


class OutputDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    resource: str
    attribute: str = "id"


class ResourceGraph(BaseModel):
    """Everything one build produces, ready for a provisioning backend."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str
    security_groups: dict[NodeRole, SecurityGroupDescriptor]
    iam_role: IamRoleDescriptor
    instance_profiles: tuple[InstanceProfileDescriptor, ...]
    workers: tuple[InstanceDescriptor, ...]
    control_plane: InstanceDescriptor
    edges: tuple[DependencyEdge, ...]
    outputs: tuple[OutputDescriptor, ...] = ()

    @property
    def instances(self) -> tuple[InstanceDescriptor, ...]:
        return (*self.workers, self.control_plane)

    def dependencies_of(self, logical_name: str) -> list[str]:
        return [e.before for e in self.edges if e.after == logical_name]

    def creation_order(self) -> list[str]:
        """Instance names in an order consistent with the edges; ties keep declaration order."""
        pending = [i.logical_name for i in self.instances]
        done: list[str] = []
        while pending:
            ready = next(
                (n for n in pending if all(d in done for d in self.dependencies_of(n))),
                None,
            )
            if ready is None:
                raise ValueError(f"Dependency cycle among instances: {pending}")
            done.append(ready)
            pending.remove(ready)
        return done


class ValidationErrorDetail(BaseModel):
    """Single validation failure."""

    field: str
    message: str
    code: str
    value: Optional[str] = None

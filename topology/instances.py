from typing import Optional, Sequence

from topology.errors import DuplicateDeviceNameError
from topology.models import (
    PRIMARY_DEVICE_NAME,
    BaseImage,
    ClusterInstanceInput,
    ClusterSpec,
    InstanceDescriptor,
    MachineImage,
    NodeRole,
    Placement,
    PrimaryVolumeInput,
    SubnetType,
    VolumeDescriptor,
)


def format_resource_name(
    base_name: str,
    name_prefix: Optional[str] = None,
    env_tag: Optional[str] = None,
) -> str:
    """Compose `{prefix-}{base}{-env}`, skipping the unset parts."""
    parts = [p for p in (name_prefix, base_name, env_tag) if p]
    return "-".join(parts)


def profile_name(instance_logical_name: str) -> str:
    return f"{instance_logical_name}-profile"


def resolve_volumes(
    instance_name: str,
    instance_spec: ClusterInstanceInput,
) -> tuple[VolumeDescriptor, ...]:
    """Primary volume first, then the secondary volumes in declared order.

    Raises:
        DuplicateDeviceNameError: if a device name is used twice on the instance.
    """
    primary = instance_spec.primary_volume or PrimaryVolumeInput()
    volumes = [
        VolumeDescriptor(
            device_name=PRIMARY_DEVICE_NAME,
            volume_size_gb=primary.volume_size_gb,
            volume_type=primary.volume_type,
            delete_on_termination=primary.delete_on_termination,
        )
    ]

    seen = {PRIMARY_DEVICE_NAME}
    for volume in instance_spec.secondary_volumes:
        if volume.device_name in seen:
            raise DuplicateDeviceNameError(
                instance_name,
                volume.device_name,
                primary=volume.device_name == PRIMARY_DEVICE_NAME,
            )
        seen.add(volume.device_name)
        volumes.append(
            VolumeDescriptor(
                device_name=volume.device_name,
                volume_size_gb=volume.volume_size_gb,
                volume_type=volume.volume_type,
                delete_on_termination=volume.delete_on_termination,
            )
        )

    return tuple(volumes)


def resolve_placement(spec: ClusterSpec) -> Placement:
    """Explicit subnets win; otherwise the subnet type, defaulting to public."""
    if spec.subnets:
        return Placement(
            subnet_ids=tuple(s.subnet_id for s in spec.subnets),
            associate_public_ip_address=spec.associate_public_ip_address,
        )
    return Placement(
        subnet_type=spec.subnet_type or SubnetType.PUBLIC,
        associate_public_ip_address=spec.associate_public_ip_address,
    )


def resolve_machine_image(spec: ClusterSpec) -> MachineImage:
    if spec.ami_param_name:
        return MachineImage(ssm_parameter_name=spec.ami_param_name)
    return MachineImage(image_name=BaseImage.UBUNTU.value)


class InstanceSpecResolver:
    """Resolves one role's instance request into a concrete instance descriptor."""

    def resolve(
        self,
        role: NodeRole,
        spec: ClusterSpec,
        logical_name: str,
        security_group: str,
        user_data: Sequence[str] = (),
        depends_on: Sequence[str] = (),
        replica: Optional[int] = None,
    ) -> InstanceDescriptor:
        instance_spec = spec.instance_spec(role)

        return InstanceDescriptor(
            logical_name=logical_name,
            name=format_resource_name(logical_name, spec.name_prefix, spec.env_tag),
            role=role,
            replica=replica,
            instance_type=f"{instance_spec.instance_class}.{instance_spec.instance_size.value}",
            volumes=resolve_volumes(logical_name, instance_spec),
            placement=resolve_placement(spec),
            machine_image=resolve_machine_image(spec),
            security_group=security_group,
            instance_profile=profile_name(logical_name),
            key_pair_name=spec.key_pair_name,
            user_data=tuple(user_data),
            depends_on=tuple(depends_on),
        )

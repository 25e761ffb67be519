import logging

import pulumi
import pulumi_aws as aws

from infra.components.iam import ClusterInstanceRole
from topology.models import (
    ANY_IPV4_CIDR,
    InstanceDescriptor,
    MachineImage,
    NodeRole,
    Placement,
    ResolvedIngressRule,
    ResourceGraph,
    SubnetType,
)
from topology.userdata import render_instance_refs, render_user_data

logger = logging.getLogger(__name__)

CANONICAL_OWNER_ID = "099720109477"

# Tag that tells NAT-routed private subnets (Private) from isolated ones (Isolated).
SUBNET_TYPE_TAG = "aws-cdk:subnet-type"


def subnet_type_filters(subnet_type: SubnetType) -> list[dict]:
    """EC2 describe-subnets filters selecting subnets of one type."""
    if subnet_type == SubnetType.PUBLIC:
        return [{"name": "map-public-ip-on-launch", "values": ["true"]}]

    tag_value = "Private" if subnet_type == SubnetType.PRIVATE_WITH_EGRESS else "Isolated"
    return [
        {"name": "map-public-ip-on-launch", "values": ["false"]},
        {"name": f"tag:{SUBNET_TYPE_TAG}", "values": [tag_value]},
    ]


class K8sCluster(pulumi.ComponentResource):
    """Realizes a ResourceGraph on AWS: security groups, instance role, profiles and instances."""

    def __init__(
        self,
        name: str,
        graph: ResourceGraph,
        vpc_id: str,
        provider: aws.Provider | None = None,
        tags: dict[str, str] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("k8s:cluster:K8sCluster", name, None, opts)

        self._graph = graph
        self._vpc_id = vpc_id
        self._tags = tags or {}
        self._provider = provider
        self._invoke_opts = pulumi.InvokeOptions(provider=provider)
        self._image_ids: dict[MachineImage, str] = {}
        self._subnet_ids: dict[Placement, str] = {}

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)

        self.security_groups: dict[NodeRole, aws.ec2.SecurityGroup] = {}
        for role, descriptor in graph.security_groups.items():
            self.security_groups[role] = self._create_security_group(
                descriptor.logical_name, descriptor.group_name, descriptor.description, child_opts
            )

        # Rules reference the other role's group, so all groups must exist first.
        self.ingress_rules: dict[NodeRole, list[aws.ec2.SecurityGroupRule]] = {}
        for role, descriptor in graph.security_groups.items():
            self.ingress_rules[role] = [
                self._create_ingress_rule(
                    f"{descriptor.logical_name}-ingress-{i}",
                    self.security_groups[role],
                    rule,
                    child_opts,
                )
                for i, rule in enumerate(descriptor.ingress_rules)
            ]

        self.iam = ClusterInstanceRole(
            name,
            graph.iam_role,
            provider=provider,
            tags=self._tags,
            opts=pulumi.ResourceOptions(parent=self),
        )

        self.instance_profiles: dict[str, aws.iam.InstanceProfile] = {}
        for profile in graph.instance_profiles:
            self.instance_profiles[profile.logical_name] = aws.iam.InstanceProfile(
                profile.logical_name,
                role=self.iam.role_name,
                tags=self._tags,
                opts=child_opts,
            )

        self.instances: dict[str, aws.ec2.Instance] = {}
        descriptors = {i.logical_name: i for i in graph.instances}
        for logical_name in graph.creation_order():
            self.instances[logical_name] = self._create_instance(descriptors[logical_name])

        self.control_plane_instance = self.instances[graph.control_plane.logical_name]
        self.worker_instances = [self.instances[w.logical_name] for w in graph.workers]

        resources: dict[str, pulumi.CustomResource] = {
            **self.instances,
            **{graph.security_groups[r].logical_name: sg for r, sg in self.security_groups.items()},
        }
        self.exports: dict[str, pulumi.Output] = {
            o.key: getattr(resources[o.resource], o.attribute) for o in graph.outputs
        }

        self.register_outputs(
            {
                "control_plane_instance_id": self.control_plane_instance.id,
                "worker_instance_ids": [w.id for w in self.worker_instances],
                "control_plane_security_group_id": self.security_groups[NodeRole.CONTROL_PLANE].id,
                "worker_security_group_id": self.security_groups[NodeRole.WORKER].id,
            }
        )

    def _create_security_group(
        self,
        logical_name: str,
        group_name: str,
        description: str,
        opts: pulumi.ResourceOptions,
    ) -> aws.ec2.SecurityGroup:
        sg = aws.ec2.SecurityGroup(
            logical_name,
            name=group_name,
            vpc_id=self._vpc_id,
            description=description,
            tags={"Name": group_name, **self._tags},
            opts=opts,
        )

        aws.ec2.SecurityGroupRule(
            f"{logical_name}-egress",
            type="egress",
            security_group_id=sg.id,
            cidr_blocks=[ANY_IPV4_CIDR],
            protocol="-1",
            from_port=0,
            to_port=0,
            description="Allow all outbound traffic",
            opts=opts,
        )
        return sg

    def _create_ingress_rule(
        self,
        name: str,
        group: aws.ec2.SecurityGroup,
        rule: ResolvedIngressRule,
        opts: pulumi.ResourceOptions,
    ) -> aws.ec2.SecurityGroupRule:
        source_security_group_id: pulumi.Input[str] | None = rule.source_security_group_id
        if rule.source_role is not None:
            source_security_group_id = self.security_groups[rule.source_role].id

        return aws.ec2.SecurityGroupRule(
            name,
            type="ingress",
            security_group_id=group.id,
            protocol=rule.protocol,
            from_port=rule.from_port,
            to_port=rule.to_port,
            cidr_blocks=[rule.cidr_block] if rule.cidr_block else None,
            source_security_group_id=source_security_group_id,
            description=rule.description,
            opts=opts,
        )

    def _resolve_image_id(self, image: MachineImage) -> str:
        if image in self._image_ids:
            return self._image_ids[image]

        if image.ssm_parameter_name:
            image_id = aws.ssm.get_parameter(
                name=image.ssm_parameter_name,
                opts=self._invoke_opts,
            ).value
        else:
            image_id = aws.ec2.get_ami(
                most_recent=True,
                owners=[CANONICAL_OWNER_ID],
                filters=[
                    {"name": "name", "values": [image.image_name]},
                    {"name": "virtualization-type", "values": ["hvm"]},
                ],
                opts=self._invoke_opts,
            ).id

        self._image_ids[image] = image_id
        return image_id

    def _resolve_subnet_id(self, placement: Placement) -> str:
        """Explicit subnets are used as given; otherwise the first VPC subnet matching the type."""
        if placement.subnet_ids:
            return placement.subnet_ids[0]
        if placement in self._subnet_ids:
            return self._subnet_ids[placement]

        subnets = aws.ec2.get_subnets(
            filters=[
                {"name": "vpc-id", "values": [self._vpc_id]},
                *subnet_type_filters(placement.subnet_type),
            ],
            opts=self._invoke_opts,
        )
        if not subnets.ids:
            raise ValueError(
                f"No {placement.subnet_type.value} subnets found in VPC {self._vpc_id}"
            )

        self._subnet_ids[placement] = sorted(subnets.ids)[0]
        return self._subnet_ids[placement]

    def _create_instance(self, descriptor: InstanceDescriptor) -> aws.ec2.Instance:
        dependencies = self._graph.dependencies_of(descriptor.logical_name)
        depends_on = [self.instances[d] for d in dependencies]

        # Boot scripts may reference IDs of instances created before this one.
        user_data = pulumi.Output.all(*[i.id for i in depends_on]).apply(
            lambda ids: render_user_data(
                render_instance_refs(
                    descriptor.logical_name, descriptor.user_data, dict(zip(dependencies, ids))
                )
            )
        )

        root, *secondary = descriptor.volumes
        logger.debug("Creating instance %s after %s", descriptor.logical_name, dependencies or "nothing")

        return aws.ec2.Instance(
            descriptor.logical_name,
            ami=self._resolve_image_id(descriptor.machine_image),
            instance_type=descriptor.instance_type,
            subnet_id=self._resolve_subnet_id(descriptor.placement),
            vpc_security_group_ids=[self.security_groups[descriptor.role].id],
            iam_instance_profile=self.instance_profiles[descriptor.instance_profile].name,
            associate_public_ip_address=descriptor.placement.associate_public_ip_address,
            key_name=descriptor.key_pair_name,
            user_data=user_data,
            metadata_options=aws.ec2.InstanceMetadataOptionsArgs(
                http_endpoint="enabled",
                http_tokens="required" if descriptor.require_imdsv2 else "optional",
            ),
            root_block_device=aws.ec2.InstanceRootBlockDeviceArgs(
                volume_size=root.volume_size_gb,
                volume_type=root.volume_type.value,
                delete_on_termination=root.delete_on_termination,
            ),
            ebs_block_devices=[
                aws.ec2.InstanceEbsBlockDeviceArgs(
                    device_name=v.device_name,
                    volume_size=v.volume_size_gb,
                    volume_type=v.volume_type.value,
                    delete_on_termination=v.delete_on_termination,
                )
                for v in secondary
            ],
            tags={"Name": descriptor.name, "NodeRole": descriptor.role.value, **self._tags},
            opts=pulumi.ResourceOptions(
                parent=self,
                provider=self._provider,
                depends_on=depends_on,
            ),
        )

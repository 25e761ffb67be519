import json

import pulumi
import pulumi_aws as aws

from topology.models import IamRoleDescriptor


class ClusterInstanceRole(pulumi.ComponentResource):
    """IAM role shared by every cluster instance.

    When the descriptor references an external role it is extended in place
    with the same managed and inline policies instead of creating a new one.
    """

    def __init__(
        self,
        name: str,
        descriptor: IamRoleDescriptor,
        provider: aws.Provider | None = None,
        tags: dict[str, str] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("k8s:cluster:ClusterInstanceRole", name, None, opts)

        self._tags = tags or {}
        child_opts = pulumi.ResourceOptions(parent=self, provider=provider)

        if descriptor.is_external:
            self.role = None
            self.role_name: pulumi.Output[str] = pulumi.Output.from_input(descriptor.role_name)
            self.role_arn: pulumi.Output[str] = pulumi.Output.from_input(descriptor.external_role_arn)
        else:
            assume_role_policy = json.dumps(
                {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Principal": {"Service": descriptor.service_principal},
                            "Action": "sts:AssumeRole",
                        }
                    ],
                }
            )

            self.role = aws.iam.Role(
                descriptor.logical_name,
                name=descriptor.role_name,
                assume_role_policy=assume_role_policy,
                description="Role for EC2 instance",
                tags={"Name": descriptor.role_name, **self._tags},
                opts=child_opts,
            )
            self.role_name = self.role.name
            self.role_arn = self.role.arn

        for i, policy_arn in enumerate(descriptor.managed_policy_arns):
            aws.iam.RolePolicyAttachment(
                f"{descriptor.logical_name}-policy-{i}",
                role=self.role_name,
                policy_arn=policy_arn,
                opts=child_opts,
            )

        for policy_name, document in descriptor.inline_policies.items():
            aws.iam.RolePolicy(
                f"{descriptor.logical_name}-{policy_name.lower()}",
                name=policy_name,
                role=self.role_name,
                policy=json.dumps(document),
                opts=child_opts,
            )

        self.register_outputs(
            {
                "role_name": self.role_name,
                "role_arn": self.role_arn,
            }
        )

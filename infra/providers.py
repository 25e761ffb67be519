import pulumi
import pulumi_aws as aws

from topology.models import ClusterSpec
from topology.settings import Settings


def create_aws_provider(spec: ClusterSpec, settings: Settings) -> aws.Provider:
    """Create the AWS provider the cluster is deployed with.

    When a deploy role is configured the provider assumes it; otherwise the
    default credential chain is used.
    """

    default_tags = {
        "ManagedBy": "Pulumi",
        "Cluster": spec.cluster_name,
        "Stack": pulumi.get_stack(),
    }
    if spec.env_tag:
        default_tags["Environment"] = spec.env_tag

    all_tags = {**default_tags, **settings.stack_tags, **spec.tags}

    assume_roles = None
    if settings.deploy_role_arn:
        assume_roles = [
            aws.ProviderAssumeRoleArgs(
                role_arn=settings.deploy_role_arn,
                external_id=settings.deploy_role_external_id,
                session_name=f"pulumi-{pulumi.get_stack()}",
                duration="1h",
            )
        ]

    return aws.Provider(
        f"{spec.cluster_name}-aws",
        region=settings.aws_region,
        assume_roles=assume_roles,
        default_tags=aws.ProviderDefaultTagsArgs(
            tags=all_tags,
        ),
    )

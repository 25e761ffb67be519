import json
from typing import Optional

import pulumi
from pydantic import ValidationError

from topology.models import ClusterInstanceInput, ClusterSpec, SubnetInput


class ConfigError(ValueError):
    """Raised when stack configuration cannot be turned into a ClusterSpec."""


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse a string boolean value."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


def _parse_int(key: str, value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"Config key {key!r} must be an integer, got {value!r}") from e


def _parse_json(key: str, value: Optional[str], default: dict | list | None = None) -> dict | list | None:
    """Parse a JSON string."""
    if value is None:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config key {key!r} is not valid JSON: {e}") from e


def _load_subnets(config: pulumi.Config) -> Optional[list[SubnetInput]]:
    """Load explicit subnets, given either as JSON objects or plain IDs."""
    subnets_data = _parse_json("subnets", config.get("subnets"))
    if subnets_data is None:
        return None
    if not isinstance(subnets_data, list):
        raise ConfigError("Config key 'subnets' must be a JSON list")

    return [
        SubnetInput(subnet_id=s) if isinstance(s, str) else SubnetInput.model_validate(s)
        for s in subnets_data
    ]


def _load_instance(config: pulumi.Config, key: str) -> ClusterInstanceInput:
    data = _parse_json(key, config.get(key), {}) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config key {key!r} must be a JSON object")
    return ClusterInstanceInput.model_validate(data)


def load_cluster_spec(config: Optional[pulumi.Config] = None) -> ClusterSpec:
    """Load the cluster specification from Pulumi config."""
    config = config or pulumi.Config()

    tags = _parse_json("tags", config.get("tags"), {}) or {}
    if not isinstance(tags, dict):
        raise ConfigError("Config key 'tags' must be a JSON object")

    try:
        return ClusterSpec(
            vpc_id=config.require("vpcId"),
            subnet_type=config.get("subnetType"),
            subnets=_load_subnets(config),
            associate_public_ip_address=_parse_bool(config.get("associatePublicIpAddress"), False),
            key_pair_name=config.get("keyPairName"),
            cluster_name=config.get("clusterName") or "k8s",
            ami_param_name=config.get("amiParamName"),
            role_arn=config.get("roleArn"),
            control_plane_instance=_load_instance(config, "controlPlaneInstance"),
            worker_instance=_load_instance(config, "workerInstance"),
            worker_nodes_count=_parse_int("workerNodesCount", config.get("workerNodesCount"), 1),
            name_prefix=config.get("namePrefix"),
            env_tag=config.get("envTag"),
            tags={str(k): str(v) for k, v in tags.items()},
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid cluster configuration: {e}") from e

import json

import pytest

from infra.config import ConfigError, load_cluster_spec
from topology.models import InstanceSize, PeerType, SubnetType


class FakeConfig:
    """Stands in for pulumi.Config with plain string values."""

    def __init__(self, values: dict[str, str]):
        self._values = values

    def get(self, key: str):
        return self._values.get(key)

    def require(self, key: str) -> str:
        if key not in self._values:
            raise KeyError(key)
        return self._values[key]


def test_minimal_config_uses_defaults():
    spec = load_cluster_spec(FakeConfig({"vpcId": "vpc-1"}))

    assert spec.vpc_id == "vpc-1"
    assert spec.cluster_name == "k8s"
    assert spec.worker_nodes_count == 1
    assert spec.associate_public_ip_address is False
    assert spec.subnets is None
    assert spec.worker_instance.instance_size == InstanceSize.MEDIUM


def test_full_config():
    spec = load_cluster_spec(
        FakeConfig(
            {
                "vpcId": "vpc-1",
                "clusterName": "my-cluster",
                "subnetType": "private_with_egress",
                "associatePublicIpAddress": "true",
                "keyPairName": "ec2-instances",
                "amiParamName": "/ami/ubuntu",
                "roleArn": "arn:aws:iam::123456789012:role/MyCustomRole",
                "workerNodesCount": "3",
                "namePrefix": "learning",
                "envTag": "dev",
                "workerInstance": json.dumps(
                    {
                        "instance_size": "large",
                        "ingress_rules": [
                            {"port": {"lower_range": 22}, "peer_type": "SecurityGroup", "peer": "sg-1"}
                        ],
                    }
                ),
                "tags": json.dumps({"dept": "platform", "cost-centre": 12345}),
            }
        )
    )

    assert spec.subnet_type == SubnetType.PRIVATE_WITH_EGRESS
    assert spec.associate_public_ip_address is True
    assert spec.worker_nodes_count == 3
    assert spec.worker_instance.instance_size == InstanceSize.LARGE
    assert spec.worker_instance.ingress_rules[0].peer_type == PeerType.SECURITY_GROUP
    assert spec.tags == {"dept": "platform", "cost-centre": "12345"}


def test_subnets_accept_ids_or_objects():
    spec = load_cluster_spec(
        FakeConfig(
            {
                "vpcId": "vpc-1",
                "subnets": json.dumps(["subnet-a", {"subnet_id": "subnet-b", "availability_zone": "ap-south-2b"}]),
            }
        )
    )

    assert [s.subnet_id for s in spec.subnets] == ["subnet-a", "subnet-b"]
    assert spec.subnets[1].availability_zone == "ap-south-2b"


def test_invalid_json_is_an_error():
    with pytest.raises(ConfigError, match="controlPlaneInstance"):
        load_cluster_spec(FakeConfig({"vpcId": "vpc-1", "controlPlaneInstance": "{not json"}))


def test_negative_worker_count_rejected():
    with pytest.raises(ConfigError):
        load_cluster_spec(FakeConfig({"vpcId": "vpc-1", "workerNodesCount": "-1"}))


def test_non_integer_worker_count_rejected():
    with pytest.raises(ConfigError, match="workerNodesCount"):
        load_cluster_spec(FakeConfig({"vpcId": "vpc-1", "workerNodesCount": "two"}))


def test_cluster_name_with_space_rejected():
    with pytest.raises(ConfigError):
        load_cluster_spec(FakeConfig({"vpcId": "vpc-1", "clusterName": "k8s prod"}))

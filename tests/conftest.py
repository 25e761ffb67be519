import pytest

from tests.factories import INIT, INSTALL, make_spec
from topology.builder import TopologyBuilder
from topology.models import ClusterSpec
from topology.userdata import UserDataComposer


@pytest.fixture
def builder() -> TopologyBuilder:
    return TopologyBuilder(composer=UserDataComposer(INIT), install_script=INSTALL)


@pytest.fixture
def base_spec() -> ClusterSpec:
    return make_spec(
        ami_param_name="/ami/ubuntu",
        key_pair_name="ec2-instances",
        associate_public_ip_address=True,
        cluster_name="k8s",
        name_prefix="learning",
        env_tag="dev",
        control_plane_instance={
            "ingress_rules": [{"port": {"lower_range": 443}, "peer_type": "AnyIpv4"}],
            "secondary_volumes": [{"device_name": "/dev/sdb", "volume_size_gb": 20}],
        },
    )

import logging

import pytest
from pydantic import ValidationError

from tests.factories import INIT, INSTALL, make_spec
from topology.builder import INSTANCE_MANAGED_POLICIES, TopologyBuilder
from topology.errors import ClusterValidationError, DuplicateDeviceNameError, UnresolvedInstanceRefError
from topology.models import PRIMARY_DEVICE_NAME, ClusterInstanceInput, NodeRole
from topology.userdata import join_command


def test_two_workers_public_ip_example(builder):
    graph = builder.build(make_spec(worker_nodes_count=2, associate_public_ip_address=True))

    assert len(graph.workers) == 2
    assert graph.control_plane.role is NodeRole.CONTROL_PLANE
    assert len(graph.security_groups[NodeRole.CONTROL_PLANE].ingress_rules) == 5 + 1
    assert len(graph.security_groups[NodeRole.WORKER].ingress_rules) == 3 * 2 + 1


@pytest.mark.parametrize("count", [0, 1, 3])
def test_every_worker_precedes_control_plane(builder, count):
    graph = builder.build(make_spec(worker_nodes_count=count))

    assert len(graph.workers) == count
    assert [w.replica for w in graph.workers] == list(range(1, count + 1))
    assert sorted(graph.dependencies_of("k8s-ctrl-plane")) == sorted(w.logical_name for w in graph.workers)
    assert graph.control_plane.depends_on == tuple(w.logical_name for w in graph.workers)
    assert graph.creation_order()[-1] == "k8s-ctrl-plane"
    assert len(graph.instance_profiles) == count + 1


def test_control_plane_boot_sequence(builder):
    spec = make_spec(
        worker_nodes_count=2,
        control_plane_instance={"prepend_user_data": ["echo pre"], "append_user_data": ["echo post"]},
        worker_instance={"append_user_data": ["echo worker-post"]},
    )

    graph = builder.build(spec)

    assert graph.control_plane.user_data == (
        "echo pre",
        *INSTALL,
        *INIT,
        join_command("${k8s-worker-1.InstanceId}"),
        join_command("${k8s-worker-2.InstanceId}"),
        "echo post",
    )
    for worker in graph.workers:
        assert worker.user_data == (*INSTALL, "echo worker-post")


def test_zero_workers_yield_no_join_commands(builder):
    graph = builder.build(make_spec(worker_nodes_count=0))

    assert graph.control_plane.user_data == (*INSTALL, *INIT)
    assert graph.edges == ()


def test_instance_names_and_profiles(builder, base_spec):
    graph = builder.build(base_spec)

    assert graph.workers[0].logical_name == "k8s-worker-1"
    assert graph.workers[0].name == "learning-k8s-worker-1-dev"
    assert graph.control_plane.name == "learning-k8s-ctrl-plane-dev"
    assert {p.logical_name for p in graph.instance_profiles} == {
        "k8s-worker-1-profile",
        "k8s-ctrl-plane-profile",
    }
    assert all(p.role == graph.iam_role.logical_name for p in graph.instance_profiles)
    assert [v.device_name for v in graph.control_plane.volumes] == [PRIMARY_DEVICE_NAME, "/dev/sdb"]


def test_new_role_gets_managed_and_inline_policies(builder, base_spec):
    role = builder.build(base_spec).iam_role

    assert not role.is_external
    assert role.role_name == "learning-k8s-ec2-role-dev"
    assert role.service_principal == "ec2.amazonaws.com"
    assert role.managed_policy_arns == INSTANCE_MANAGED_POLICIES
    statement = role.inline_policies["SsmPolicy"]["Statement"][0]
    assert statement["Action"] == ["ssm:SendCommand"]
    assert statement["Resource"] == "*"


def test_external_role_is_extended(builder, base_spec):
    spec = base_spec.model_copy(update={"role_arn": "arn:aws:iam::123456789012:role/MyCustomRole"})

    role = builder.build(spec).iam_role

    assert role.is_external
    assert role.external_role_arn == "arn:aws:iam::123456789012:role/MyCustomRole"
    assert role.role_name == "MyCustomRole"
    assert role.managed_policy_arns == INSTANCE_MANAGED_POLICIES


def test_placement_conflict_fails_before_derivation(builder):
    spec = make_spec(subnets=[{"subnet_id": "subnet-xxxxx"}], subnet_type="private_with_egress")

    with pytest.raises(ClusterValidationError):
        builder.build(spec)


def test_missing_peer_fails_build(builder):
    spec = make_spec(
        control_plane_instance={"ingress_rules": [{"port": {"lower_range": 443}, "peer_type": "SecurityGroup"}]}
    )

    with pytest.raises(ClusterValidationError, match="ControlPlane"):
        builder.build(spec)


def test_reserved_device_name_on_worker_names_instance(builder, base_spec):
    spec = base_spec.model_copy(
        update={
            "worker_instance": ClusterInstanceInput.model_validate(
                {"secondary_volumes": [{"device_name": PRIMARY_DEVICE_NAME, "volume_size_gb": 20}]}
            )
        }
    )

    with pytest.raises(DuplicateDeviceNameError) as exc_info:
        builder.build(spec)

    assert exc_info.value.instance_name == "k8s-worker-1"
    assert str(exc_info.value).endswith("for instance k8s-worker-1")


def test_build_is_idempotent(builder, base_spec):
    assert builder.build(base_spec) == builder.build(base_spec)


def test_outputs_are_published(builder):
    graph = builder.build(make_spec(cluster_name="my-cluster", worker_nodes_count=2))

    keys = [o.key for o in graph.outputs]
    assert keys == [
        "CtrlPlaneInstanceId",
        "Worker1InstanceId",
        "Worker2InstanceId",
        "MyClusterControlPlaneSecurityGroupId",
        "MyClusterWorkerSecurityGroupId",
    ]


def test_build_logs_progress(builder, base_spec, caplog):
    with caplog.at_level(logging.INFO, logger="topology.builder"):
        builder.build(base_spec)

    assert "Building topology for cluster k8s" in caplog.text


def test_default_builder_loads_packaged_scripts():
    graph = TopologyBuilder().build(make_spec())

    assert any("kubeadm init" in line for line in graph.control_plane.user_data)
    assert not any("kubeadm init" in line for line in graph.workers[0].user_data)


@pytest.mark.parametrize("name", ["k8s prod", "-k8s", "k8s/prod", ""])
def test_cluster_name_must_be_usable_in_instance_refs(name):
    with pytest.raises(ValidationError):
        make_spec(cluster_name=name)


def test_unknown_ref_in_control_plane_user_data_fails_build(builder):
    spec = make_spec(control_plane_instance={"append_user_data": ["echo ${k8s-worker-7.InstanceId}"]})

    with pytest.raises(UnresolvedInstanceRefError) as exc_info:
        builder.build(spec)

    assert exc_info.value.instance_name == "k8s-ctrl-plane"
    assert exc_info.value.reference == "k8s-worker-7"


def test_worker_cannot_reference_other_instances(builder):
    spec = make_spec(
        worker_nodes_count=2,
        worker_instance={"prepend_user_data": ["echo ${k8s-worker-2.InstanceId}"]},
    )

    with pytest.raises(UnresolvedInstanceRefError) as exc_info:
        builder.build(spec)

    assert exc_info.value.instance_name == "k8s-worker-1"

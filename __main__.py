"""Pulumi program: build the cluster topology from stack config and realize it on AWS."""

import logging

from dotenv import load_dotenv

load_dotenv()

import pulumi

from infra.components.cluster import K8sCluster
from infra.config import load_cluster_spec
from infra.providers import create_aws_provider
from topology.builder import TopologyBuilder
from topology.errors import ClusterValidationError
from topology.settings import get_settings

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("k8s-cluster")

spec = load_cluster_spec()
try:
    graph = TopologyBuilder().build(spec)
except ClusterValidationError as e:
    for detail in e.errors:
        logger.error("%s [%s] at %s: %s", detail.code, spec.cluster_name, detail.field, detail.message)
    raise

aws_provider = create_aws_provider(spec, settings)

cluster = K8sCluster(
    name=spec.cluster_name,
    graph=graph,
    vpc_id=spec.vpc_id,
    provider=aws_provider,
    tags=spec.tags,
)

for key, value in cluster.exports.items():
    pulumi.export(key, value)

pulumi.export(
    "cluster_summary",
    {
        "cluster_name": spec.cluster_name,
        "worker_nodes_count": spec.worker_nodes_count,
        "control_plane_instance_type": graph.control_plane.instance_type,
        "worker_instance_type": graph.workers[0].instance_type if graph.workers else None,
        "creation_order": graph.creation_order(),
    },
)

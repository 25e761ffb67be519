"""Cluster topology builder: validated spec in, resource graph out."""

from topology.builder import TopologyBuilder
from topology.errors import (
    BuildError,
    ClusterValidationError,
    DuplicateDeviceNameError,
    UnresolvedInstanceRefError,
)
from topology.models import ClusterSpec, ResourceGraph

__all__ = [
    "BuildError",
    "ClusterSpec",
    "ClusterValidationError",
    "DuplicateDeviceNameError",
    "ResourceGraph",
    "TopologyBuilder",
    "UnresolvedInstanceRefError",
]

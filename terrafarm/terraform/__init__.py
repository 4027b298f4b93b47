"""Terraform collaborators: process runner and state reader."""

from terrafarm.terraform.runner import TerraformRunner, write_var_file
from terrafarm.terraform.state import NodeRecord, count_resources, is_farm_active, read_nodes

__all__ = [
    "NodeRecord",
    "TerraformRunner",
    "count_resources",
    "is_farm_active",
    "read_nodes",
    "write_var_file",
]

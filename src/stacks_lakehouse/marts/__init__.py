"""Analytical marts derived from the staging relations."""

from stacks_lakehouse.marts.builders import StagingSnapshot
from stacks_lakehouse.marts.registry import MART_NAMES, MARTS, MartDefinition, refresh_mart

__all__ = ["MARTS", "MART_NAMES", "MartDefinition", "StagingSnapshot", "refresh_mart"]

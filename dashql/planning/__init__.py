"""Backend-agnostic join planning."""

from .paths import PathResolver
from .joins import JoinPlanner

__all__ = ["PathResolver", "JoinPlanner"]

"""
stackup - Lightweight multi-service orchestrator

Builds service images from a declarative manifest, attaches services to
shared networks, publishes their host ports, and runs them as one batch.
"""

__version__ = "0.1.0"
__author__ = "Local Pipeline Team"


__all__ = [
    "StackupConfig",
    "load_config",
    "get_stackup_home",
    "Orchestrator",
    "parse",
    "load_manifest",
]

from .config import StackupConfig, load_config, get_stackup_home
from .manifest import parse, load_manifest
from .orchestrator import Orchestrator

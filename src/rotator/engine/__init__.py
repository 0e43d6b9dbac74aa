"""
Rotation engine: copy loop and daemon supervisor.
"""

from .copy_loop import CopyEngine
from .supervisor import DaemonSupervisor

__all__ = ["CopyEngine", "DaemonSupervisor"]

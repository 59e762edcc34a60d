"""
Composable node components shipped with dai_ros_py.

`BUILTIN_PREFIX` is an install prefix advertising these components in the
resource index under the package name `dai_ros_py`.
"""

from pathlib import Path

from .demo import Consumer, Producer

BUILTIN_PREFIX = Path(__file__).resolve().parent / "prefix"

__all__ = ["BUILTIN_PREFIX", "Consumer", "Producer"]

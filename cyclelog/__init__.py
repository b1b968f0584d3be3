"""CycleLog：离线优先的番茄钟、分类记录与统计。"""

__version__ = "0.1.0"

from .cli import main

__all__ = ["main", "__version__"]

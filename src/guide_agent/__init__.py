"""Travel guide agent tool-invocation layer."""

from .config import FusionConfig, RouterConfig

__all__ = ["FusionConfig", "RouterConfig"]

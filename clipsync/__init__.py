"""
clipsync - Clipboard history with end-to-end encrypted multi-device sync.
"""

from .context import ClipSyncContext, create_context
from .messages import MessageRouter

try:
    from importlib.metadata import version

    __version__ = version("clipsync")
except Exception:
    __version__ = "0.0.0"

__all__ = ["ClipSyncContext", "MessageRouter", "create_context"]

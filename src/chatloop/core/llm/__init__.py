"""LLM client package.

This namespace hosts the streaming `LLMClient` along with supporting types
(`types.py`), wire-format encoders and stream decoders (`transport.py`), and
offline/scripted backends (`offline.py`). Every backend satisfies the
`ModelBackend` protocol consumed by the agent loop.
"""

from .client import LLMClient
from .offline import OfflineBackend, ScriptedBackend, ScriptedCall
from .types import ApiStyle, LLMSettings, ModelBackend, StreamOptions

__all__ = [
    "ApiStyle",
    "LLMClient",
    "LLMSettings",
    "ModelBackend",
    "OfflineBackend",
    "ScriptedBackend",
    "ScriptedCall",
    "StreamOptions",
]

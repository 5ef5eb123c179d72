from .config import EngineConfig
from .contracts import ChatResult, CompletionMode, CompletionResult
from .engine import CompletionEngine
from .extractor import extract
from .normalizer import normalize

__all__ = [
    "ChatResult",
    "CompletionEngine",
    "CompletionMode",
    "CompletionResult",
    "EngineConfig",
    "extract",
    "normalize",
]

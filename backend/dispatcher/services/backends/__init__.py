"""
Backend adapters.

- FastBackend: synchronous, low-latency completion with a model cascade
- AgenticBackend: asynchronous remote tasks driven by create + poll

Both raise ``DispatchError`` with a typed ``ErrorKind``; neither retries on
the other backend (that policy lives in the orchestration layer).
"""
from .agentic import AgenticBackend, build_agentic_backend
from .extraction import EXTRACTORS, extract_text
from .fast import FastBackend, build_fast_backend

__all__ = [
    "AgenticBackend",
    "FastBackend",
    "EXTRACTORS",
    "build_agentic_backend",
    "build_fast_backend",
    "extract_text",
]

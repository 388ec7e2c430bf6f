from __future__ import annotations

from .trace_checker import LemmaCheck, TraceChecker, UnsupportedFormulaError

__all__ = [
    "LemmaCheck",
    "TraceChecker",
    "UnsupportedFormulaError",
]

from __future__ import annotations

from .ast import Model, LemmaKind, StoreOpKind, TypeKind
from .compiler import CompilerConfig, WarrenCompiler
from .errors import CompileError, CompilationError
from .ir import CompiledSystem, CompiledLemma
from .terms import Theory
from .validator import ModelValidator

__all__ = [
    "Model",
    "LemmaKind",
    "StoreOpKind",
    "TypeKind",
    "CompilerConfig",
    "WarrenCompiler",
    "CompileError",
    "CompilationError",
    "CompiledSystem",
    "CompiledLemma",
    "Theory",
    "ModelValidator",
]

"""
Warren compile errors.

Every error the compiler reports is static. Unmatched patterns and guards are
not errors at all: they are dead-ended trace branches in the compiled model.

Taxonomy:
- declaration: DuplicateSymbol, DuplicateType, UnknownSymbol, UnknownType,
  ArityMismatch, TypeMismatch (collected in batch over the declaration phase)
- scoping: UnboundVariable, DuplicateBinding, FreeLemmaVariable
- policy: AccessViolation
- theory: TheoryDivergence, NoMatch
- structural: RecursiveSyscall, UnknownEventTag, FactAbsent, MisplacedReturn,
  MalformedSystem
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional


class ErrorCategory(Enum):
    DECLARATION = "declaration"
    SCOPING = "scoping"
    POLICY = "policy"
    THEORY = "theory"
    STRUCTURAL = "structural"


class CompileError(Exception):
    """
    Base class for every error surfaced to the driver.

    Attributes:
        declaration: name of the offending declaration (symbol, syscall, process, lemma...)
        location: source location (line, column) when the front end supplied one
        position: command position inside a body, e.g. "client#0/main.2.1"
    """
    kind: str = "CompileError"
    category: ErrorCategory = ErrorCategory.STRUCTURAL

    def __init__(
        self,
        message: str,
        *,
        declaration: Optional[str] = None,
        location: Optional[tuple] = None,
        position: Optional[str] = None,
    ):
        self.message = message
        self.declaration = declaration
        self.location = location
        self.position = position
        super().__init__(self._render())

    def _render(self) -> str:
        prefix = f"Line {self.location[0]}, Col {self.location[1]}: " if self.location else ""
        where = f" (at {self.position})" if self.position else ""
        return f"{prefix}[{self.kind}] {self.message}{where}"

    def at(self, *, declaration: Optional[str] = None, position: Optional[str] = None,
           location: Optional[tuple] = None) -> "CompileError":
        """Fill in context that was not known where the error was raised."""
        if self.declaration is None and declaration is not None:
            self.declaration = declaration
        if self.position is None and position is not None:
            self.position = position
        if self.location is None and location is not None:
            self.location = location
        self.args = (self._render(),)
        return self

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "category": self.category.value,
            "message": self.message,
            "declaration": self.declaration,
            "location": self.location,
            "position": self.position,
        }


# --- declaration errors ---

class DuplicateSymbol(CompileError):
    kind = "DuplicateSymbol"
    category = ErrorCategory.DECLARATION


class DuplicateType(CompileError):
    kind = "DuplicateType"
    category = ErrorCategory.DECLARATION


class UnknownSymbol(CompileError):
    kind = "UnknownSymbol"
    category = ErrorCategory.DECLARATION


class UnknownType(CompileError):
    kind = "UnknownType"
    category = ErrorCategory.DECLARATION


class ArityMismatch(CompileError):
    kind = "ArityMismatch"
    category = ErrorCategory.DECLARATION


class TypeMismatch(CompileError):
    kind = "TypeMismatch"
    category = ErrorCategory.DECLARATION


# --- scoping errors ---

class UnboundVariable(CompileError):
    kind = "UnboundVariable"
    category = ErrorCategory.SCOPING


class DuplicateBinding(CompileError):
    kind = "DuplicateBinding"
    category = ErrorCategory.SCOPING


class FreeLemmaVariable(CompileError):
    kind = "FreeLemmaVariable"
    category = ErrorCategory.SCOPING


# --- policy errors ---

class AccessViolation(CompileError):
    kind = "AccessViolation"
    category = ErrorCategory.POLICY


# --- theory errors ---

class TheoryDivergence(CompileError):
    kind = "TheoryDivergence"
    category = ErrorCategory.THEORY


class NoMatch(CompileError):
    kind = "NoMatch"
    category = ErrorCategory.THEORY


# --- structural errors ---

class RecursiveSyscall(CompileError):
    kind = "RecursiveSyscall"
    category = ErrorCategory.STRUCTURAL


class UnknownEventTag(CompileError):
    kind = "UnknownEventTag"
    category = ErrorCategory.STRUCTURAL


class FactAbsent(CompileError):
    kind = "FactAbsent"
    category = ErrorCategory.STRUCTURAL


class MisplacedReturn(CompileError):
    kind = "MisplacedReturn"
    category = ErrorCategory.STRUCTURAL


class MalformedSystem(CompileError):
    kind = "MalformedSystem"
    category = ErrorCategory.STRUCTURAL


class CompilationError(Exception):
    """Raised when compilation fails. Carries every collected CompileError."""

    def __init__(self, errors: Iterable[CompileError]):
        self.errors: List[CompileError] = list(errors)
        lines = [str(e) for e in self.errors]
        summary = f"{len(self.errors)} compile error(s)"
        super().__init__(summary + (":\n  " + "\n  ".join(lines) if lines else ""))

    @property
    def kinds(self) -> List[str]:
        return [e.kind for e in self.errors]

"""
Types and access control.

Types only declare vocabulary (process / channel / filesys). Grants say which
operations a process type may invoke on objects of a given type (or with no
object at all); attacker grants say which attacks may be used on behalf of,
or instead of, principals of a type.

Unauthorised invocations are rejected at compile time with AccessViolation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .ast import TypeKind
from .errors import AccessViolation, DuplicateType, UnknownType


@dataclass(frozen=True)
class TypeDecl:
    name: str
    kind: TypeKind


@dataclass(frozen=True)
class Grant:
    subject: str
    object: Optional[str]
    ops: FrozenSet[str]


@dataclass(frozen=True)
class AttackerGrant:
    subject: str
    ops: FrozenSet[str]


class AccessPolicy:
    """Type table plus the grant and attacker-grant tables."""

    def __init__(self):
        self.types: Dict[str, TypeDecl] = {}
        self.grants: List[Grant] = []
        self.attacker_grants: List[AttackerGrant] = []
        self._table: Dict[Tuple[str, Optional[str]], Set[str]] = {}
        self._attacker_table: Dict[str, Set[str]] = {}

    # -----------------------------
    # Declarations
    # -----------------------------
    def declare_type(self, name: str, kind: TypeKind, location: Optional[tuple] = None) -> TypeDecl:
        if name in self.types:
            raise DuplicateType(f"Type '{name}' is already declared as {self.types[name].kind.value}.",
                                declaration=name, location=location)
        decl = TypeDecl(name, kind)
        self.types[name] = decl
        return decl

    def declare_grant(self, subject: str, object_type: Optional[str], ops: Iterable[str],
                      location: Optional[tuple] = None) -> Grant:
        self._require_type(subject, location)
        if object_type is not None:
            self._require_type(object_type, location)
        grant = Grant(subject, object_type, frozenset(ops))
        self.grants.append(grant)
        self._table.setdefault((subject, object_type), set()).update(grant.ops)
        return grant

    def declare_attacker_grant(self, subject: str, ops: Iterable[str],
                               location: Optional[tuple] = None) -> AttackerGrant:
        self._require_type(subject, location)
        grant = AttackerGrant(subject, frozenset(ops))
        self.attacker_grants.append(grant)
        self._attacker_table.setdefault(subject, set()).update(grant.ops)
        return grant

    def _require_type(self, name: str, location: Optional[tuple]):
        if name not in self.types:
            raise UnknownType(f"Type '{name}' is not declared.", declaration=name, location=location)

    # -----------------------------
    # Queries
    # -----------------------------
    def kind_of(self, name: str) -> Optional[TypeKind]:
        decl = self.types.get(name)
        return decl.kind if decl else None

    def check_invocation(self, process_type: str, object_type: Optional[str], op: str) -> bool:
        return op in self._table.get((process_type, object_type), ())

    def check_attack(self, subject_type: str, attack: str) -> bool:
        return attack in self._attacker_table.get(subject_type, ())

    def require(self, process_type: str, object_type: Optional[str], op: str,
                position: Optional[str] = None, declaration: Optional[str] = None):
        if not self.check_invocation(process_type, object_type, op):
            target = f" on '{object_type}'" if object_type else ""
            raise AccessViolation(
                f"Processes of type '{process_type}' are not allowed to invoke '{op}'{target}.",
                declaration=declaration, position=position)

    def require_attack(self, subject_types: Iterable[str], attack: str,
                       position: Optional[str] = None, declaration: Optional[str] = None):
        subjects = list(subject_types)
        if not any(self.check_attack(t, attack) for t in subjects):
            raise AccessViolation(
                f"No attacker grant for '{attack}' on any of {subjects}.",
                declaration=declaration, position=position)

    def __repr__(self):
        return f"AccessPolicy({len(self.types)} types, {len(self.grants)} grants, {len(self.attacker_grants)} attacker grants)"

"""
Syscalls and attacks.

Syscalls are parameterised command bodies inlined by value at every call
site. Recursion, direct or mutual, is rejected. An active attack overriding a
syscall turns each authorised call site into an explicit set of tagged
alternatives, `normal` plus one `attack:<name>` per applicable attack, which
the elaborator expands side by side. Passive attacks are never substitutions:
a process invokes them explicitly, and they may only append to the attacker
store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .ast import (
    Apply, AttackDecl, Call, Command, Ident, Return, Seq, StoreOp, StoreOpKind, SyscallDecl,
    called_names, visit_ast,
)
from .access import AccessPolicy
from .errors import AccessViolation, ArityMismatch, DuplicateSymbol, RecursiveSyscall, UnknownSymbol
from .store import ATTACKER_STORE


NORMAL = "normal"


@dataclass(frozen=True)
class Definition:
    """A callable body: a syscall, an active attack or a passive attack."""
    name: str
    params: tuple
    body: Command
    kind: str  # "syscall" | "builtin" | "active" | "passive"
    target: Optional[str] = None
    location: Optional[tuple] = None

    @property
    def is_attack(self) -> bool:
        return self.kind in ("active", "passive")


@dataclass(frozen=True)
class CallAlternative:
    tag: str
    definition: Definition


def _builtin(name: str, params: Sequence[str], *body: Command) -> Definition:
    return Definition(name, tuple(params), Seq(list(body)), "builtin")


# send/recv on channels, read/write on files
BUILTIN_SYSCALLS: Dict[str, Definition] = {
    d.name: d for d in (
        _builtin("send", ["c", "m"],
                 StoreOp(StoreOpKind.INSERT, "c", Ident("m"))),
        _builtin("recv", ["c"],
                 StoreOp(StoreOpKind.CONSUME, "c", Ident("received$")),
                 Return(Ident("received$"))),
        _builtin("read", ["f"],
                 StoreOp(StoreOpKind.READ, "f", Ident("content$")),
                 Return(Ident("content$"))),
        _builtin("write", ["f", "m"],
                 StoreOp(StoreOpKind.CONSUME, "f", Ident("old$")),
                 StoreOp(StoreOpKind.INSERT, "f", Ident("m"))),
    )
}


class SyscallTable:
    """Every callable definition, plus the active-attack override index."""

    def __init__(self):
        self.definitions: Dict[str, Definition] = dict(BUILTIN_SYSCALLS)
        self._overrides: Dict[str, List[Definition]] = {}

    def declare_syscall(self, decl: SyscallDecl) -> Definition:
        self._check_fresh_name(decl.name, decl.location)
        self._check_params(decl.name, decl.params, decl.location)
        d = Definition(decl.name, tuple(decl.params), decl.body, "syscall", location=decl.location)
        self.definitions[d.name] = d
        return d

    def declare_attack(self, decl: AttackDecl) -> Definition:
        self._check_fresh_name(decl.name, decl.location)
        self._check_params(decl.name, decl.params, decl.location)
        if decl.is_active:
            target = self.definitions.get(decl.target)
            if target is None or target.is_attack:
                raise UnknownSymbol(
                    f"Attack '{decl.name}' overrides '{decl.target}', which is not a declared syscall.",
                    declaration=decl.name, location=decl.location)
            if len(target.params) != len(decl.params):
                raise ArityMismatch(
                    f"Attack '{decl.name}' takes {len(decl.params)} parameter(s) but '{decl.target}' takes "
                    f"{len(target.params)}.", declaration=decl.name, location=decl.location)
            d = Definition(decl.name, tuple(decl.params), decl.body, "active", decl.target, decl.location)
            self._overrides.setdefault(decl.target, []).append(d)
        else:
            self._check_passive_body(decl)
            d = Definition(decl.name, tuple(decl.params), decl.body, "passive", location=decl.location)
        self.definitions[d.name] = d
        return d

    def _check_fresh_name(self, name: str, location: Optional[tuple]):
        if name in self.definitions:
            what = "built-in syscall" if self.definitions[name].kind == "builtin" else self.definitions[name].kind
            raise DuplicateSymbol(f"'{name}' is already declared ({what}).", declaration=name, location=location)

    def _check_params(self, name: str, params: Sequence[str], location: Optional[tuple]):
        seen = set()
        for p in params:
            if p in seen:
                raise DuplicateSymbol(f"Parameter '{p}' appears twice in '{name}'.",
                                      declaration=name, location=location)
            seen.add(p)

    def _check_passive_body(self, decl: AttackDecl):
        def _visit(node):
            if isinstance(node, StoreOp) and not (node.op == StoreOpKind.INSERT and node.target == ATTACKER_STORE):
                raise AccessViolation(
                    f"Passive attack '{decl.name}' may only insert into the '{ATTACKER_STORE}' store, "
                    f"found {node.op.value} on '{node.target}'.", declaration=decl.name, location=node.location)
            if isinstance(node, Call) or (isinstance(node, Apply) and node.name in self.definitions):
                raise AccessViolation(
                    f"Passive attack '{decl.name}' may not invoke '{node.name}'.",
                    declaration=decl.name, location=node.location)

        visit_ast(decl.body, _visit)

    # -----------------------------
    # Queries
    # -----------------------------
    def get(self, name: str) -> Optional[Definition]:
        return self.definitions.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.definitions

    def overrides_of(self, syscall: str) -> List[Definition]:
        return list(self._overrides.get(syscall, ()))

    def check_arity(self, definition: Definition, argc: int, position: Optional[str] = None):
        if argc != len(definition.params):
            raise ArityMismatch(
                f"'{definition.name}' expects {len(definition.params)} argument(s), got {argc}.",
                declaration=definition.name, position=position)

    def plan_call(self, definition: Definition, subject_types: Iterable[str],
                  policy: AccessPolicy, intercept: bool = True) -> List[CallAlternative]:
        """
        The tagged continuations of one call site.

        An active attack applies when the calling process's type, or the type of
        a channel/file argument, holds an attacker grant naming it.
        """
        plan = [CallAlternative(NORMAL, definition)]
        if not intercept or definition.is_attack:
            return plan
        subjects = list(subject_types)
        for attack in self.overrides_of(definition.name):
            if any(policy.check_attack(t, attack.name) for t in subjects):
                plan.append(CallAlternative(f"attack:{attack.name}", attack))
        return plan

    # -----------------------------
    # Recursion
    # -----------------------------
    def call_graph(self) -> Dict[str, List[str]]:
        graph: Dict[str, List[str]] = {}
        for name, d in self.definitions.items():
            # calls below an attack body are never intercepted again, so the
            # target -> attack override is not a call edge
            graph[name] = sorted({n for n in called_names(d.body) if n in self.definitions})
        return graph

    def check_recursion(self) -> List[RecursiveSyscall]:
        graph = self.call_graph()
        errors: List[RecursiveSyscall] = []
        reported = set()
        state: Dict[str, int] = {}  # 0 = unvisited, 1 = on stack, 2 = done

        for root in sorted(graph):
            if state.get(root):
                continue
            stack = [(root, iter(graph[root]))]
            path = [root]
            state[root] = 1
            while stack:
                node, it = stack[-1]
                nxt = next(it, None)
                if nxt is None:
                    state[node] = 2
                    stack.pop()
                    path.pop()
                    continue
                if state.get(nxt, 0) == 1:
                    cycle = path[path.index(nxt):] + [nxt]
                    key = frozenset(cycle)
                    if key not in reported:
                        reported.add(key)
                        d = self.definitions[nxt]
                        errors.append(RecursiveSyscall(
                            f"Recursive call chain: {' -> '.join(cycle)}.",
                            declaration=nxt, location=d.location))
                    continue
                if state.get(nxt, 0) == 0:
                    state[nxt] = 1
                    path.append(nxt)
                    stack.append((nxt, iter(graph[nxt])))
        return errors

    def __repr__(self):
        return f"SyscallTable({len(self.definitions)} definitions)"

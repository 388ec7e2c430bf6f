"""
Store model.

Each channel or file instance owns a Store: a multiset of ground facts.
Channel facts are consumed on receipt; a file keeps a single persistent
content fact that `read` patterns against without consuming it.

The compiler uses the registry statically (instance lookup, FactAbsent
checks); the simulator uses Store objects to execute the compiled model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .ast import TypeKind
from .errors import FactAbsent, UnknownSymbol
from .terms import Substitution, Term, Theory, is_ground, rename, unify

ATTACKER_STORE = "attacker"

Candidate = Tuple[Term, Substitution]


class Store:
    """A multiset of ground facts attached to one channel/file instance."""

    def __init__(self, name: str, kind: TypeKind, theory: Theory, facts: Iterable[Term] = ()):
        self.name = name
        self.kind = kind
        self.theory = theory
        self.facts: List[Term] = [theory.normalize(f) for f in facts]

    def copy(self) -> "Store":
        clone = Store(self.name, self.kind, self.theory)
        clone.facts = list(self.facts)
        return clone

    def __len__(self):
        return len(self.facts)

    def __contains__(self, fact: Term) -> bool:
        return self.theory.normalize(fact) in self.facts

    def insert(self, fact: Term):
        if not is_ground(fact):
            raise ValueError(f"Only ground facts can be stored in '{self.name}', got {fact}.")
        self.facts.append(self.theory.normalize(fact))

    def remove(self, fact: Term):
        normal = self.theory.normalize(fact)
        try:
            self.facts.remove(normal)
        except ValueError:
            raise FactAbsent(f"Fact {normal} is not present in store '{self.name}'.", declaration=self.name)

    def matches(self, pattern: Term) -> List[Candidate]:
        """Every distinct fact unifying with `pattern`, with the pattern bindings."""
        seen = set()
        out: List[Candidate] = []
        for fact in self.facts:
            if fact in seen:
                continue
            subst = self.theory.try_match(pattern, fact)
            if subst is not None:
                seen.add(fact)
                out.append((fact, subst))
        return out

    def match_consume(self, pattern: Term,
                      choose: Optional[Callable[[List[Candidate]], Candidate]] = None) -> Optional[Substitution]:
        """
        Select a fact matching `pattern`, remove it and return the bindings.

        Returns None when no fact matches: the command blocks.
        """
        options = self.matches(pattern)
        if not options:
            return None
        fact, subst = choose(options) if choose else options[0]
        self.facts.remove(fact)
        return subst

    def read(self, pattern: Term) -> List[Substitution]:
        """Non-consuming match (file content)."""
        return [subst for _, subst in self.matches(pattern)]

    def __repr__(self):
        return f"Store({self.name}, {len(self.facts)} facts)"


@dataclass
class StoreDecl:
    """Static view of a declared instance."""
    name: str
    type_name: Optional[str]
    kind: TypeKind
    initial: List[Term] = field(default_factory=list)


@dataclass(frozen=True)
class StoreSite:
    """A store operation in the compiled model: (instance, node) touching `store`."""
    instance: str
    node: int
    store: str
    term: Term


class StoreRegistry:
    """
    Declared channel/file instances, addressed exclusively by name.

    The attacker store always exists; passive attacks append to it and
    active attacks draw attacker-supplied facts from it.
    """

    def __init__(self, theory: Theory):
        self.theory = theory
        self.decls: Dict[str, StoreDecl] = {
            ATTACKER_STORE: StoreDecl(ATTACKER_STORE, None, TypeKind.CHANNEL),
        }

    def declare(self, name: str, type_name: str, kind: TypeKind, initial: Sequence[Term] = ()) -> StoreDecl:
        decl = StoreDecl(name, type_name, kind, [self.theory.normalize(t) for t in initial])
        self.decls[name] = decl
        return decl

    def __contains__(self, name: str) -> bool:
        return name in self.decls

    def get(self, name: str) -> StoreDecl:
        decl = self.decls.get(name)
        if decl is None:
            raise UnknownSymbol(f"No channel or file named '{name}'.", declaration=name)
        return decl

    def instantiate(self) -> Dict[str, Store]:
        """Fresh runtime stores, seeded with the declared initial contents."""
        return {name: Store(name, d.kind, self.theory, d.initial) for name, d in self.decls.items()}

    def check_removals(self, inserts: Sequence[StoreSite], removals: Sequence[StoreSite]) -> List[FactAbsent]:
        """
        A removal is statically absent when no insert site and no initial
        content anywhere in the system can ever produce a unifying fact.
        """
        errors: List[FactAbsent] = []
        for rm in removals:
            target = rename(self.theory.normalize(rm.term), "r$")
            candidates = [rename(self.theory.normalize(s.term), "i$") for s in inserts if s.store == rm.store]
            candidates += self.decls[rm.store].initial if rm.store in self.decls else []
            if any(unify(target, c) is not None for c in candidates):
                continue
            errors.append(FactAbsent(
                f"Removal of {rm.term} from '{rm.store}' can never succeed: no process inserts a matching fact.",
                declaration=rm.instance, position=f"{rm.instance}/node {rm.node}"))
        return errors

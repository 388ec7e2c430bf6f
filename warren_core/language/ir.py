"""
Warren IR - backend-agnostic compiled model.

A CompiledSystem holds:
1. The closed theory (symbols + equations).
2. Global setup: fresh constants as nonce generators.
3. One TransitionGraph per process instance: an arena of nodes addressed by
   integer index. Successor lists may form cycles (repeat loops).
4. Causal precedence edges between store producers and consumers.
5. Lemmas as closed trace formulas.

Backend adapters translate this structure to a concrete prover syntax.
"""

from __future__ import annotations

import pickle
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .terms import Term, Theory, Var, Const, Lit, App, Name


# ============================================================================
# TRANSITION NODES
# ============================================================================

@dataclass(frozen=True)
class Condition:
    """left = right (equal=True) or left != right, judged modulo the theory"""
    left: Term
    right: Term
    equal: bool = True

    def __str__(self):
        return f"{self.left} {'=' if self.equal else '!='} {self.right}"


@dataclass(kw_only=True)
class Node:
    index: int = -1
    successors: List[int] = field(default_factory=list)
    position: Optional[str] = None

    @property
    def label(self) -> str:
        return self.__class__.__name__


@dataclass(kw_only=True)
class Start(Node):
    pass


@dataclass(kw_only=True)
class End(Node):
    pass


@dataclass(kw_only=True)
class Fresh(Node):
    """var := a new nonce, globally distinct per `nonce` id and per execution"""
    var: str
    nonce: int


@dataclass(kw_only=True)
class Assign(Node):
    var: str
    term: Term


@dataclass(kw_only=True)
class Guard(Node):
    """
    Holds iff every condition holds and, for every excluded group,
    not all of that group's conditions hold (earlier arms win).
    """
    conditions: Tuple[Condition, ...] = ()
    excluded: Tuple[Tuple[Condition, ...], ...] = ()


@dataclass(kw_only=True)
class Choice(Node):
    """Branch point: successors are Guard nodes."""
    pass


@dataclass(kw_only=True)
class LoopHead(Node):
    pass


@dataclass(kw_only=True)
class CallSite(Node):
    """Call site with attacker-controlled alternatives: successors are Alternative nodes."""
    callee: str


@dataclass(kw_only=True)
class Alternative(Node):
    """'normal' or 'attack:<name>'"""
    tag: str


@dataclass(kw_only=True)
class Join(Node):
    pass


@dataclass(kw_only=True)
class Insert(Node):
    store: str
    term: Term


@dataclass(kw_only=True)
class Remove(Node):
    store: str
    term: Term


@dataclass(kw_only=True)
class Consume(Node):
    """Match-and-consume; `binds` are the pattern variables it introduces."""
    store: str
    pattern: Term
    binds: Tuple[str, ...] = ()


@dataclass(kw_only=True)
class Read(Node):
    """Non-consuming match against file content."""
    store: str
    pattern: Term
    binds: Tuple[str, ...] = ()


@dataclass(kw_only=True)
class Emit(Node):
    term: App
    event_index: int


SILENT_NODES = (Start, Fresh, Assign, Guard, Choice, LoopHead, CallSite, Alternative, Join)


class TransitionGraph:
    """Arena of nodes; node.index is its position in `nodes`."""

    def __init__(self):
        self.nodes: List[Node] = []

    def add(self, node: Node) -> int:
        node.index = len(self.nodes)
        self.nodes.append(node)
        return node.index

    def connect(self, source: int, target: int):
        self.nodes[source].successors.append(target)

    def __getitem__(self, index: int) -> Node:
        return self.nodes[index]

    def __len__(self):
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes)

    @property
    def entry(self) -> int:
        return 0

    def of_type(self, *kinds) -> List[Node]:
        return [n for n in self.nodes if isinstance(n, kinds)]

    def reachable(self, start: int = 0) -> List[int]:
        seen = set()
        order: List[int] = []
        stack = [start]
        while stack:
            i = stack.pop()
            if i in seen:
                continue
            seen.add(i)
            order.append(i)
            stack.extend(reversed(self.nodes[i].successors))
        return order

    def __repr__(self):
        return f"TransitionGraph({len(self.nodes)} nodes)"


# ============================================================================
# INSTANCES, EVENTS, CAUSALITY
# ============================================================================

@dataclass(frozen=True)
class EventSite:
    """An event emission point; `index` orders it within its instance."""
    instance: str
    index: int
    node: int
    tag: str
    arity: int
    term: App


@dataclass
class ProcessInstance:
    name: str
    template: str
    type_name: str
    channels: Dict[str, str]
    graph: TransitionGraph
    events: List[EventSite] = field(default_factory=list)


@dataclass(frozen=True)
class GlobalFresh:
    """A fresh constant: generated once, before any process step."""
    name: str
    var: str
    nonce: int


INITIAL = "<init>"
ATTACKER = "<attacker>"


@dataclass(frozen=True)
class CausalEdge:
    """
    The fact consumed/read at `consumer` must have been produced earlier by
    `producer`: (instance, node), or INITIAL/ATTACKER with node -1.
    """
    store: str
    producer: Tuple[str, int]
    consumer: Tuple[str, int]


# ============================================================================
# LEMMA FORMULAS
# ============================================================================

@dataclass(frozen=True)
class EventAt:
    term: App
    index: str

    def __str__(self):
        return f"{self.term} @ {self.index}"


@dataclass(frozen=True)
class Precedes:
    before: str
    after: str

    def __str__(self):
        return f"{self.before} < {self.after}"


@dataclass(frozen=True)
class Equal:
    left: Term
    right: Term

    def __str__(self):
        return f"{self.left} = {self.right}"


@dataclass(frozen=True)
class TrueF:
    def __str__(self):
        return "T"


@dataclass(frozen=True)
class NotF:
    operand: "TraceFormula"

    def __str__(self):
        return f"not({self.operand})"


@dataclass(frozen=True)
class AndF:
    operands: Tuple["TraceFormula", ...]

    def __str__(self):
        return "(" + " & ".join(str(o) for o in self.operands) + ")"


@dataclass(frozen=True)
class OrF:
    operands: Tuple["TraceFormula", ...]

    def __str__(self):
        return "(" + " | ".join(str(o) for o in self.operands) + ")"


@dataclass(frozen=True)
class ImpliesF:
    premise: "TraceFormula"
    conclusion: "TraceFormula"

    def __str__(self):
        return f"({self.premise} ==> {self.conclusion})"


@dataclass(frozen=True)
class Quant:
    """kind is 'forall' or 'exists'; names starting with '#' range over trace positions"""
    kind: str
    variables: Tuple[str, ...]
    body: "TraceFormula"

    def __str__(self):
        word = "All" if self.kind == "forall" else "Ex"
        return f"{word} {' '.join(self.variables)}. {self.body}"


TraceFormula = Union[EventAt, Precedes, Equal, TrueF, NotF, AndF, OrF, ImpliesF, Quant]


def is_index(name: str) -> bool:
    return name.startswith("#")


@dataclass
class CompiledLemma:
    name: str
    kind: str  # "exists-trace" | "all-traces" (reachable -> exists-trace, corresponds -> all-traces)
    source_kind: str
    formula: TraceFormula
    location: Optional[tuple] = None

    def __str__(self):
        return f"lemma {self.name}: {self.kind} {self.formula}"


# ============================================================================
# THE COMPILED ARTIFACT
# ============================================================================

@dataclass
class CompiledSystem:
    """
    The final artifact produced by the compiler.
    This is what backend adapters and the simulator consume.
    """
    theory: Theory
    instances: List[ProcessInstance]
    lemmas: List[CompiledLemma]
    stores: Dict[str, Any] = field(default_factory=dict)
    constants: List[str] = field(default_factory=list)
    globals: List[GlobalFresh] = field(default_factory=list)
    causal_edges: List[CausalEdge] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    def instance(self, name: str) -> ProcessInstance:
        for inst in self.instances:
            if inst.name == name:
                return inst
        raise KeyError(name)

    def event_tags(self) -> Dict[str, set]:
        tags: Dict[str, set] = {}
        for inst in self.instances:
            for ev in inst.events:
                tags.setdefault(ev.tag, set()).add(ev.arity)
        return tags

    def nonce_ids(self) -> List[int]:
        ids = [g.nonce for g in self.globals]
        for inst in self.instances:
            ids.extend(n.nonce for n in inst.graph.of_type(Fresh))
        return ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "theory": {
                "symbols": {s.name: s.arity for s in self.theory.symbols.values()},
                "equations": [str(e) for e in self.theory.equations],
            },
            "constants": list(self.constants),
            "globals": [_to_jsonable(g) for g in self.globals],
            "stores": {k: _to_jsonable(v) for k, v in self.stores.items()},
            "instances": [
                {
                    "name": inst.name,
                    "template": inst.template,
                    "type": inst.type_name,
                    "channels": dict(inst.channels),
                    "nodes": [dict(kind=n.label, **_to_jsonable(n)) for n in inst.graph],
                    "events": [_to_jsonable(e) for e in inst.events],
                }
                for inst in self.instances
            ],
            "causal_edges": [_to_jsonable(e) for e in self.causal_edges],
            "lemmas": [
                {"name": l.name, "kind": l.kind, "source_kind": l.source_kind, "formula": str(l.formula)}
                for l in self.lemmas
            ],
            "notes": list(self.notes),
        }

    def save(self, filepath: str):
        with open(filepath, 'wb') as f: pickle.dump(self, f)

    @staticmethod
    def load(filepath: str) -> 'CompiledSystem':
        with open(filepath, 'rb') as f: return pickle.load(f)

    def __repr__(self):
        return f"CompiledSystem({len(self.instances)} instances, {len(self.lemmas)} lemmas)"


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, (Var, Const, Lit, App, Name)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        return {f.name: _to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value

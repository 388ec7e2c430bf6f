"""
Warren - IR Simulator

Executes a CompiledSystem under its interleaving semantics:
- instances run concurrently over shared channel/file stores
- an unmatched consume/read/remove blocks the instance (it may be enabled later)
- a Choice with no holding guard is a dead end for that instance
- every alternative of an attacked call site is a separate branch
- every `new` yields a value no other execution step ever yields

Exploration is depth-first and deterministic (no randomness): silent steps
run alone, store and event steps are interleaved, and every matching fact of
a consume is a separate branch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from .language.ir import (
    Assign, CallSite, CompiledSystem, Choice, Condition, Consume, Emit, End, Fresh, Guard, Insert, Read, Remove,
    SILENT_NODES,
)
from .language.store import ATTACKER_STORE, Store
from .language.terms import Name, Term, is_ground, substitute


@dataclass(frozen=True)
class SimulatorConfig:
    """
    Exploration bounds. Defaults suit small protocol models.
    """
    max_steps: int = 200  # per trace; longer runs are cut and marked truncated
    max_traces: int = 1000
    keep_attacker_facts: bool = True  # the attacker never forgets what it consumed
    dedupe: bool = True  # report each distinct event sequence once


@dataclass(frozen=True)
class TraceEvent:
    instance: str
    event_index: int
    term: Term

    def __str__(self):
        return f"{self.instance}:{self.term}"


@dataclass
class Trace:
    """One explored execution."""
    events: List[TraceEvent] = field(default_factory=list)
    finished: List[str] = field(default_factory=list)  # instances that reached End
    blocked: List[str] = field(default_factory=list)
    stores: Dict[str, List[Term]] = field(default_factory=dict)
    steps: int = 0
    truncated: bool = False

    @property
    def terms(self) -> List[Term]:
        return [e.term for e in self.events]

    @property
    def complete(self) -> bool:
        return not self.blocked and not self.truncated

    def __str__(self):
        return " -> ".join(str(e) for e in self.events) or "<empty>"


class SimulationError(Exception):
    """Raised when the IR asks for something that cannot execute (e.g. a non-ground insert)."""
    pass


@dataclass
class _State:
    pcs: Dict[str, Optional[int]]
    envs: Dict[str, Dict[str, Term]]
    stores: Dict[str, Store]
    events: List[TraceEvent]
    nonce_counts: Dict[int, int]
    dead: List[str]
    steps: int = 0

    def copy(self) -> "_State":
        return _State(
            pcs=dict(self.pcs),
            envs={k: dict(v) for k, v in self.envs.items()},
            stores={k: s.copy() for k, s in self.stores.items()},
            events=list(self.events),
            nonce_counts=dict(self.nonce_counts),
            dead=list(self.dead),
            steps=self.steps,
        )


class Simulator:
    """
    Usage:
        sim = Simulator(compiled_system)
        for trace in sim.explore():
            print(trace)
    """

    def __init__(self, system: CompiledSystem, config: Optional[SimulatorConfig] = None):
        self.system = system
        self.config = config or SimulatorConfig()
        self.theory = system.theory
        self._graphs = {inst.name: inst.graph for inst in system.instances}

    # -----------------------------
    # Public API
    # -----------------------------
    def initial_state(self) -> _State:
        nonce_counts: Dict[int, int] = {}
        shared: Dict[str, Term] = {}
        for g in self.system.globals:
            shared[g.var] = self._nonce(g.nonce, nonce_counts)
        stores = {
            name: Store(name, decl.kind, self.theory, decl.initial)
            for name, decl in self.system.stores.items()
        }
        return _State(
            pcs={inst.name: inst.graph.entry for inst in self.system.instances},
            envs={inst.name: dict(shared) for inst in self.system.instances},
            stores=stores,
            events=[],
            nonce_counts=nonce_counts,
            dead=[],
        )

    def explore(self) -> Iterator[Trace]:
        """Depth-first over interleavings and store choices, bounded by the config."""
        produced = 0
        seen = set()
        stack = [self.initial_state()]
        while stack and produced < self.config.max_traces:
            state = stack.pop()
            successors = self.successors(state) if state.steps < self.config.max_steps else []
            if successors:
                stack.extend(reversed(successors))
                continue
            trace = self._finish(state, truncated=state.steps >= self.config.max_steps)
            key = tuple((e.instance, e.term) for e in trace.events)
            if self.config.dedupe:
                if key in seen:
                    continue
                seen.add(key)
            produced += 1
            yield trace

    def traces(self) -> List[Trace]:
        return list(self.explore())

    def find(self, predicate: Callable[[Trace], bool]) -> Optional[Trace]:
        for trace in self.explore():
            if predicate(trace):
                return trace
        return None

    # -----------------------------
    # Transitions
    # -----------------------------
    def successors(self, state: _State) -> List[_State]:
        active = [name for name, pc in state.pcs.items() if pc is not None]

        # silent steps are local: run the first one alone
        for name in active:
            if isinstance(self._graphs[name][state.pcs[name]], SILENT_NODES):
                return self._step(state, name)

        out: List[_State] = []
        for name in active:
            out.extend(self._step(state, name))
        return out

    def _step(self, state: _State, name: str) -> List[_State]:
        graph = self._graphs[name]
        node = graph[state.pcs[name]]
        env = state.envs[name]

        if isinstance(node, End):
            nxt = state.copy()
            nxt.pcs[name] = None
            return [nxt]

        if isinstance(node, Choice):
            live = [s for s in node.successors if self._guard_holds(graph[s], env)]
            if not live:
                nxt = state.copy()
                nxt.pcs[name] = None
                nxt.dead.append(name)
                return [nxt]
            return [self._advance(state, name, [s]) for s in live]

        if isinstance(node, CallSite):
            return [self._advance(state, name, [s]) for s in node.successors]

        if isinstance(node, Consume):
            store = state.stores[node.store]
            options = store.matches(self._pattern(node, env))
            out = []
            for fact, subst in options:
                nxt = self._advance(state, name, node.successors)
                if not (node.store == ATTACKER_STORE and self.config.keep_attacker_facts):
                    nxt.stores[node.store].facts.remove(fact)
                nxt.envs[name].update(subst)
                out.append(nxt)
            return out

        if isinstance(node, Read):
            out = []
            for subst in state.stores[node.store].read(self._pattern(node, env)):
                nxt = self._advance(state, name, node.successors)
                nxt.envs[name].update(subst)
                out.append(nxt)
            return out

        if isinstance(node, Remove):
            fact = self._ground(node.term, env)
            if fact not in state.stores[node.store]:
                return []
            nxt = self._advance(state, name, node.successors)
            nxt.stores[node.store].remove(fact)
            return [nxt]

        nxt = self._advance(state, name, node.successors)
        if isinstance(node, Fresh):
            nxt.envs[name][node.var] = self._nonce(node.nonce, nxt.nonce_counts)
        elif isinstance(node, Assign):
            nxt.envs[name][node.var] = self._ground(node.term, env)
        elif isinstance(node, Insert):
            nxt.stores[node.store].insert(self._ground(node.term, env))
        elif isinstance(node, Emit):
            nxt.events.append(TraceEvent(name, node.event_index, self._ground(node.term, env)))
        return [nxt]

    def _advance(self, state: _State, name: str, successors: List[int]) -> _State:
        """Copy of `state` with `name` moved to the single successor (or finished)."""
        nxt = state.copy()
        nxt.steps += 1
        nxt.pcs[name] = successors[0] if successors else None
        return nxt

    def _guard_holds(self, guard, env: Dict[str, Term]) -> bool:
        if not isinstance(guard, Guard):
            return True
        if not all(self._condition(c, env) for c in guard.conditions):
            return False
        return not any(all(self._condition(c, env) for c in group) for group in guard.excluded)

    def _condition(self, cond: Condition, env: Dict[str, Term]) -> bool:
        return self.theory.equal(self._ground(cond.left, env), self._ground(cond.right, env)) == cond.equal

    def _pattern(self, node, env: Dict[str, Term]) -> Term:
        # a loop re-runs the node: its own pattern variables are rebound, not compared
        fresh = {k: t for k, t in env.items() if k not in node.binds}
        return self._ground(node.pattern, fresh, allow_vars=True)

    def _ground(self, term: Term, env: Dict[str, Term], allow_vars: bool = False) -> Term:
        value = substitute(term, env)
        if not allow_vars and not is_ground(value):
            raise SimulationError(f"Term {term} is not ground at runtime: {value}")
        return self.theory.normalize(value)

    @staticmethod
    def _nonce(nonce: int, counts: Dict[int, int]) -> Name:
        k = counts.get(nonce, 0)
        counts[nonce] = k + 1
        return Name(f"n{nonce}.{k}")

    def _finish(self, state: _State, truncated: bool) -> Trace:
        blocked = [n for n, pc in state.pcs.items() if pc is not None] + state.dead
        return Trace(
            events=state.events,
            finished=[n for n, pc in state.pcs.items() if pc is None and n not in state.dead],
            blocked=blocked,
            stores={k: list(s.facts) for k, s in state.stores.items()},
            steps=state.steps,
            truncated=truncated,
        )

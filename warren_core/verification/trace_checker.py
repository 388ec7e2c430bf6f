"""
Warren - Trace Checker (Z3 Engine)

Decides compiled lemma formulas over concrete, finite traces.

Encoding:
1) The universe is every ground subterm of the trace events (in normal form)
   plus the ground terms the formula mentions; each gets an integer id.
2) Term variables range over universe ids, '#' index variables over trace
   positions [0, len(trace)).
3) `E @ #i` is a disjunction over the trace positions whose event matches E,
   binding E's variables to the ids of the matched subterms.
4) The closed formula is handed to Z3 (simplify, qe, smt): sat means the lemma
   holds on the trace, unsat means it fails.

Also checks, at compile time, that a lemma's ordering constraints (#i < #j)
can be satisfied at all.

Design principles:
- Fail-closed: a formula the checker cannot encode raises UnsupportedFormulaError.
- Matching inside event atoms is syntactic on normal forms.
"""

from __future__ import annotations

import z3
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from ..language.ir import (
    AndF, CompiledLemma, EventAt, Equal, ImpliesF, NotF, OrF, Precedes, Quant, TraceFormula, TrueF,
    is_index,
)
from ..language.terms import Term, Theory, Var, is_ground, match_syntactic, subterms


class UnsupportedFormulaError(Exception):
    """Raised when a trace formula cannot be encoded into Z3."""
    pass


@dataclass(frozen=True)
class LemmaCheck:
    lemma: str
    holds: Optional[bool]  # None when Z3 answers unknown
    trace_length: int
    reason: str = ""


class TraceChecker:
    def __init__(self, theory: Theory, timeout_ms: int = 10000):
        self.theory = theory
        self.timeout_ms = timeout_ms

    # -----------------------------
    # Public API
    # -----------------------------
    def check(self, lemma: Union[CompiledLemma, TraceFormula], trace) -> LemmaCheck:
        """
        `trace` is a runtime Trace or a sequence of event terms.
        """
        formula = lemma.formula if isinstance(lemma, CompiledLemma) else lemma
        name = lemma.name if isinstance(lemma, CompiledLemma) else str(formula)
        events = [self.theory.normalize(t) for t in getattr(trace, "terms", trace)]

        encoder = _Encoder(self.theory, events, formula)
        encoded = encoder.encode(formula, {})
        result = self._solve(encoded)
        if result == z3.sat:
            return LemmaCheck(name, True, len(events))
        if result == z3.unsat:
            return LemmaCheck(name, False, len(events))
        return LemmaCheck(name, None, len(events), reason="z3 returned unknown")

    def holds(self, lemma: Union[CompiledLemma, TraceFormula], trace) -> bool:
        result = self.check(lemma, trace)
        if result.holds is None:
            raise UnsupportedFormulaError(f"Could not decide '{result.lemma}': {result.reason}")
        return result.holds

    def ordering_satisfiable(self, lemma: Union[CompiledLemma, TraceFormula]) -> bool:
        """
        Whether the positive ordering constraints of a lemma admit some order
        of its trace indices (e.g. `#i < #j & #j < #i` does not).
        """
        formula = lemma.formula if isinstance(lemma, CompiledLemma) else lemma
        indices: Dict[str, z3.ArithRef] = {}
        solver = z3.Solver()
        for p in _positive_orderings(formula):
            a = indices.setdefault(p.before, z3.Int(p.before))
            b = indices.setdefault(p.after, z3.Int(p.after))
            solver.add(a < b)
        return solver.check() == z3.sat

    def _solve(self, formula: z3.BoolRef):
        tactic = z3.Then("simplify", "qe", "smt")
        solver = tactic.solver()
        solver.set("timeout", self.timeout_ms)
        solver.add(formula)
        result = solver.check()
        if result == z3.unknown:
            fallback = z3.Solver()
            fallback.set("timeout", self.timeout_ms)
            fallback.add(formula)
            result = fallback.check()
        return result


def _positive_orderings(formula: TraceFormula) -> List[Precedes]:
    if isinstance(formula, Precedes):
        return [formula]
    if isinstance(formula, AndF):
        return [p for o in formula.operands for p in _positive_orderings(o)]
    if isinstance(formula, Quant):
        return _positive_orderings(formula.body)
    if isinstance(formula, ImpliesF):
        return _positive_orderings(formula.conclusion)
    return []


class _Encoder:
    """Per-check encoding state: universe ids and Z3 variables."""

    def __init__(self, theory: Theory, events: Sequence[Term], formula: TraceFormula):
        self.theory = theory
        self.events = list(events)
        self.universe: Dict[Term, int] = {}
        for ev in self.events:
            for t in subterms(ev):
                self.universe.setdefault(t, len(self.universe))
        for t in _formula_terms(formula):
            for s in subterms(self.theory.normalize(t)):
                if is_ground(s):
                    self.universe.setdefault(s, len(self.universe))
        self.members = list(self.universe)

    def encode(self, f: TraceFormula, env: Dict[str, z3.ArithRef]) -> z3.BoolRef:
        if isinstance(f, TrueF):
            return z3.BoolVal(True)
        if isinstance(f, NotF):
            return z3.Not(self.encode(f.operand, env))
        if isinstance(f, AndF):
            return z3.And([self.encode(o, env) for o in f.operands]) if f.operands else z3.BoolVal(True)
        if isinstance(f, OrF):
            return z3.Or([self.encode(o, env) for o in f.operands]) if f.operands else z3.BoolVal(False)
        if isinstance(f, ImpliesF):
            return z3.Implies(self.encode(f.premise, env), self.encode(f.conclusion, env))
        if isinstance(f, Precedes):
            return self._index(f.before, env) < self._index(f.after, env)
        if isinstance(f, EventAt):
            return self._event_at(f, env)
        if isinstance(f, Equal):
            return self._equal(f.left, f.right, env)
        if isinstance(f, Quant):
            return self._quant(f, env)
        raise UnsupportedFormulaError(f"Unsupported trace formula: {f.__class__.__name__}")

    def _quant(self, f: Quant, env: Dict[str, z3.ArithRef]) -> z3.BoolRef:
        inner = dict(env)
        bound = []
        ranges = []
        for name in f.variables:
            v = z3.Int(f"{name}!{id(f)}")
            inner[name] = v
            bound.append(v)
            upper = len(self.events) if is_index(name) else len(self.members)
            ranges.append(z3.And(v >= 0, v < upper))
        body = self.encode(f.body, inner)
        if not bound:
            return body
        if f.kind == "forall":
            return z3.ForAll(bound, z3.Implies(z3.And(ranges), body))
        if f.kind == "exists":
            return z3.Exists(bound, z3.And(z3.And(ranges), body))
        raise UnsupportedFormulaError(f"Unknown quantifier kind '{f.kind}'")

    def _index(self, name: str, env: Dict[str, z3.ArithRef]) -> z3.ArithRef:
        if name not in env:
            raise UnsupportedFormulaError(f"Trace index '{name}' is free.")
        return env[name]

    def _event_at(self, f: EventAt, env: Dict[str, z3.ArithRef]) -> z3.BoolRef:
        idx = self._index(f.index, env)
        pattern = self.theory.normalize(f.term)
        options = []
        for pos, event in enumerate(self.events):
            binding = self._is(pattern, event, env)
            if binding is not None:
                options.append(z3.And(idx == pos, binding))
        return z3.Or(options) if options else z3.BoolVal(False)

    def _is(self, term: Term, value: Term, env: Dict[str, z3.ArithRef]) -> Optional[z3.BoolRef]:
        """Constraint under which `term` denotes the universe element `value`; None if it never can."""
        subst = match_syntactic(term, value)
        if subst is None:
            return None
        parts = []
        for name, bound in subst.items():
            if name not in env:
                raise UnsupportedFormulaError(f"Variable '{name}' is free.")
            if bound not in self.universe:
                return None
            parts.append(env[name] == self.universe[bound])
        return z3.And(parts) if parts else z3.BoolVal(True)

    def _equal(self, left: Term, right: Term, env: Dict[str, z3.ArithRef]) -> z3.BoolRef:
        left = self.theory.normalize(left)
        right = self.theory.normalize(right)
        if is_ground(left) and is_ground(right):
            return z3.BoolVal(left == right)
        if isinstance(left, Var) and isinstance(right, Var):
            return self._var(left, env) == self._var(right, env)
        options = []
        for value in self.members:
            a = self._is(left, value, env)
            b = self._is(right, value, env)
            if a is not None and b is not None:
                options.append(z3.And(a, b))
        return z3.Or(options) if options else z3.BoolVal(False)

    def _var(self, v: Var, env: Dict[str, z3.ArithRef]) -> z3.ArithRef:
        if v.name not in env:
            raise UnsupportedFormulaError(f"Variable '{v.name}' is free.")
        return env[v.name]


def _formula_terms(f: TraceFormula) -> List[Term]:
    if isinstance(f, EventAt):
        return [f.term]
    if isinstance(f, Equal):
        return [f.left, f.right]
    if isinstance(f, NotF):
        return _formula_terms(f.operand)
    if isinstance(f, (AndF, OrF)):
        return [t for o in f.operands for t in _formula_terms(o)]
    if isinstance(f, ImpliesF):
        return _formula_terms(f.premise) + _formula_terms(f.conclusion)
    if isinstance(f, Quant):
        return _formula_terms(f.body)
    return []

"""
Events and lemmas.

The event vocabulary is whatever the elaborated instances emit. Every lemma
kind is normalised to one closed trace formula (see ir.TraceFormula):

    corresponds A ~> B
        All vars(A) #i. A @ #i ==> (Ex vars(B)-vars(A) #j. B @ #j & #j < #i)

    reachable [E1, ..., En]
        Ex vars #e1 ... #en. E1 @ #e1 & ... & En @ #en & #e1 < ... < #en

Causal edges tie every consume/read site to the insert sites (or initial file
content, or the attacker) that can produce a matching fact.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .ast import (
    And, Apply, Before, ConstantDecl, EventAtom, Exists, Expression, ForAll, Formula, Ident, Implies,
    LemmaDecl, LemmaKind, Not, Or, StrLit, TermEquals, TupleExpr,
)
from .errors import FreeLemmaVariable, UnknownEventTag, UnknownSymbol
from .ir import (
    ATTACKER, INITIAL, AndF, CausalEdge, CompiledLemma, Consume, EventAt, Equal, ImpliesF, Insert,
    NotF, OrF, Precedes, ProcessInstance, Quant, Read, TraceFormula, TrueF, is_index,
)
from .store import ATTACKER_STORE, StoreRegistry
from .terms import App, Const, Lit, Term, Theory, Var, rename, tuple_term, unify


Vocabulary = Mapping[str, Set[int]]


def event_vocabulary(instances: Iterable[ProcessInstance]) -> Dict[str, Set[int]]:
    vocab: Dict[str, Set[int]] = {}
    for inst in instances:
        for ev in inst.events:
            vocab.setdefault(ev.tag, set()).add(ev.arity)
    return vocab


class LemmaTranslator:
    """Translates LemmaDecls into CompiledLemmas over a fixed event vocabulary."""

    def __init__(self, theory: Theory, constants: Mapping[str, ConstantDecl], vocabulary: Vocabulary):
        self.theory = theory
        self.constants = constants
        self.vocabulary = vocabulary

    def translate(self, lemma: LemmaDecl) -> CompiledLemma:
        try:
            formula, kind = self._translate(lemma)
        except (UnknownEventTag, FreeLemmaVariable, UnknownSymbol) as e:
            raise e.at(declaration=lemma.name, location=lemma.location)
        return CompiledLemma(lemma.name, kind, lemma.kind.value, formula, lemma.location)

    def _translate(self, lemma: LemmaDecl) -> Tuple[TraceFormula, str]:
        if lemma.kind in (LemmaKind.EXISTS_TRACE, LemmaKind.ALL_TRACES):
            if lemma.formula is None:
                raise FreeLemmaVariable(f"Lemma '{lemma.name}' has no formula.")
            return self._formula(lemma.formula, frozenset()), lemma.kind.value

        if lemma.kind == LemmaKind.REACHABLE:
            if not lemma.events:
                raise UnknownEventTag(f"Reachability lemma '{lemma.name}' lists no events.")
            names = self._implicit_variables(lemma.events, frozenset())
            bound = frozenset(names)
            indices = tuple(f"#e{k + 1}" for k in range(len(lemma.events)))
            parts: List[TraceFormula] = [EventAt(self._event(e, bound), idx) for e, idx in zip(lemma.events, indices)]
            parts += [Precedes(a, b) for a, b in zip(indices, indices[1:])]
            body = parts[0] if len(parts) == 1 else AndF(tuple(parts))
            return Quant("exists", tuple(names) + indices, body), LemmaKind.EXISTS_TRACE.value

        # corresponds
        if lemma.premise is None or lemma.conclusion is None:
            raise UnknownEventTag(f"Correspondence lemma '{lemma.name}' needs both events.")
        outer = self._implicit_variables([lemma.premise], frozenset())
        inner = self._implicit_variables([lemma.conclusion], frozenset(outer))
        outer_bound = frozenset(outer)
        premise = EventAt(self._event(lemma.premise, outer_bound), "#i")
        conclusion = EventAt(self._event(lemma.conclusion, outer_bound | frozenset(inner)), "#j")
        formula = Quant(
            "forall", tuple(outer) + ("#i",),
            ImpliesF(premise, Quant("exists", tuple(inner) + ("#j",), AndF((conclusion, Precedes("#j", "#i"))))),
        )
        return formula, LemmaKind.ALL_TRACES.value

    # -----------------------------
    # Formulas
    # -----------------------------
    def _formula(self, f: Formula, bound: frozenset) -> TraceFormula:
        if isinstance(f, EventAtom):
            self._require_index(f.index, bound)
            return EventAt(self._event(f.event, bound), f.index)
        if isinstance(f, Before):
            self._require_index(f.left, bound)
            self._require_index(f.right, bound)
            return Precedes(f.left, f.right)
        if isinstance(f, TermEquals):
            return Equal(self._term(f.left, bound), self._term(f.right, bound))
        if isinstance(f, Not):
            return NotF(self._formula(f.operand, bound))
        if isinstance(f, And):
            if not f.operands:
                return TrueF()
            return AndF(tuple(self._formula(o, bound) for o in f.operands))
        if isinstance(f, Or):
            if not f.operands:
                return NotF(TrueF())
            return OrF(tuple(self._formula(o, bound) for o in f.operands))
        if isinstance(f, Implies):
            return ImpliesF(self._formula(f.premise, bound), self._formula(f.conclusion, bound))
        if isinstance(f, (ForAll, Exists)):
            kind = "forall" if isinstance(f, ForAll) else "exists"
            return Quant(kind, tuple(f.variables), self._formula(f.body, bound | frozenset(f.variables)))
        raise UnknownSymbol(f"Unsupported formula: {f.__class__.__name__}", location=f.location)

    def _require_index(self, name: str, bound: frozenset):
        if not is_index(name):
            raise FreeLemmaVariable(f"'{name}' is used as a trace index; index variables start with '#'.")
        if name not in bound:
            raise FreeLemmaVariable(f"Trace index '{name}' is not bound by a quantifier.")

    def _event(self, event: Apply, bound: frozenset) -> App:
        arities = self.vocabulary.get(event.name)
        if not arities:
            raise UnknownEventTag(f"No process emits an event tagged '{event.name}'.")
        if len(event.args) not in arities:
            raise UnknownEventTag(
                f"Event '{event.name}' is emitted with arity {sorted(arities)}, used with {len(event.args)}.")
        return App(event.name, tuple(self._term(a, bound) for a in event.args))

    def _term(self, expr: Expression, bound: frozenset) -> Term:
        if isinstance(expr, StrLit):
            return Lit(expr.value)
        if isinstance(expr, Ident):
            if expr.name in bound:
                if is_index(expr.name):
                    raise FreeLemmaVariable(f"Trace index '{expr.name}' cannot be used as a term.")
                return Var(expr.name)
            ground = self._ground_ident(expr.name)
            if ground is None:
                raise FreeLemmaVariable(f"'{expr.name}' is not bound by a quantifier.")
            return ground
        if isinstance(expr, TupleExpr):
            return tuple_term([self._term(i, bound) for i in expr.items])
        if isinstance(expr, Apply):
            term = App(expr.name, tuple(self._term(a, bound) for a in expr.args))
            self.theory.check_term(term)
            return term
        raise UnknownSymbol(f"Unsupported expression in lemma: {expr.__class__.__name__}")

    def _ground_ident(self, name: str) -> Optional[Term]:
        const = self.constants.get(name)
        if const is not None and not const.fresh:
            return Const(name)
        sym = self.theory.symbols.get(name)
        if sym is not None and sym.arity == 0:
            return App(name, ())
        return None

    def _implicit_variables(self, events: Sequence[Apply], bound: frozenset) -> List[str]:
        """Identifiers of `events` that are neither bound nor constants, in first-use order."""
        names: List[str] = []

        def _walk(expr: Expression):
            if isinstance(expr, Ident):
                if expr.name not in bound and expr.name not in names and self._ground_ident(expr.name) is None:
                    names.append(expr.name)
            elif isinstance(expr, Apply):
                for a in expr.args:
                    _walk(a)
            elif isinstance(expr, TupleExpr):
                for i in expr.items:
                    _walk(i)

        for ev in events:
            for a in ev.args:
                _walk(a)
        return names


# ============================================================================
# CAUSAL EDGES
# ============================================================================

def derive_causal_edges(instances: Sequence[ProcessInstance], registry: StoreRegistry,
                        theory: Theory) -> List[CausalEdge]:
    producers: Dict[str, List[Tuple[Tuple[str, int], Term]]] = {}
    consumers: List[Tuple[Tuple[str, int], str, Term]] = []
    for inst in instances:
        for node in inst.graph:
            if isinstance(node, Insert):
                producers.setdefault(node.store, []).append(((inst.name, node.index), node.term))
            elif isinstance(node, (Consume, Read)):
                consumers.append(((inst.name, node.index), node.store, node.pattern))

    edges: List[CausalEdge] = []
    for site, store, pattern in consumers:
        target = rename(theory.normalize(pattern), "c$")
        for producer, term in producers.get(store, ()):
            if unify(target, rename(theory.normalize(term), "p$")) is not None:
                edges.append(CausalEdge(store, producer, site))
        if store in registry and any(unify(target, t) is not None for t in registry.get(store).initial):
            edges.append(CausalEdge(store, (INITIAL, -1), site))
        if store == ATTACKER_STORE:
            edges.append(CausalEdge(store, (ATTACKER, -1), site))
    return edges

"""
Terms and equational theories.

A term is an immutable tree built from:
  - Var:   a variable (pattern variable, IR variable or lemma variable)
  - Const: a public constant declared by the model
  - Lit:   a string literal ("1", "hello")
  - App:   application of a declared function symbol, f(t1, ..., tn)
  - Name:  a generated nonce value (only produced by the simulator)

Pairs are ordinary applications of the built-in `pair` symbol; `fst` and `snd`
are projections defined by two built-in equations present in every theory.

Rewriting never mutates a term; it always builds a new one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from .errors import NoMatch, TheoryDivergence, UnboundVariable, UnknownSymbol, DuplicateSymbol


# ============================================================================
# TERM AST
# ============================================================================

@dataclass(frozen=True)
class Var:
    name: str

    def __str__(self):
        return self.name


@dataclass(frozen=True)
class Const:
    name: str

    def __str__(self):
        return f"'{self.name}'"


@dataclass(frozen=True)
class Lit:
    value: str

    def __str__(self):
        return f'"{self.value}"'


@dataclass(frozen=True)
class App:
    """
    Example: senc(m, k)   -> App("senc", (Var("m"), Var("k")))
    Example: true         -> App("true", ())
    """
    symbol: str
    args: Tuple["Term", ...] = ()

    def __str__(self):
        if self.symbol == PAIR and len(self.args) == 2:
            return f"<{self.args[0]}, {self.args[1]}>"
        return f"{self.symbol}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class Name:
    ident: str

    def __str__(self):
        return f"~{self.ident}"


Term = Union[Var, Const, Lit, App, Name]

Substitution = Dict[str, Term]

PAIR = "pair"
FST = "fst"
SND = "snd"


def pair(left: Term, right: Term) -> App:
    return App(PAIR, (left, right))


def tuple_term(items: List[Term]) -> Term:
    """Right-nested pairs: (a, b, c) == <a, <b, c>>."""
    if len(items) == 1:
        return items[0]
    return pair(items[0], tuple_term(items[1:]))


def is_pair(term: Term) -> bool:
    return isinstance(term, App) and term.symbol == PAIR and len(term.args) == 2


# ============================================================================
# HELPERS
# ============================================================================

def variables(term: Term) -> Set[str]:
    if isinstance(term, Var):
        return {term.name}
    if isinstance(term, App):
        out: Set[str] = set()
        for a in term.args:
            out |= variables(a)
        return out
    return set()


def is_ground(term: Term) -> bool:
    return not variables(term)


def subterms(term: Term) -> Iterator[Term]:
    yield term
    if isinstance(term, App):
        for a in term.args:
            yield from subterms(a)


def applications(term: Term) -> Iterator[App]:
    for t in subterms(term):
        if isinstance(t, App):
            yield t


def substitute(term: Term, subst: Substitution) -> Term:
    if isinstance(term, Var):
        return subst.get(term.name, term)
    if isinstance(term, App):
        if not term.args:
            return term
        return App(term.symbol, tuple(substitute(a, subst) for a in term.args))
    return term


def rename(term: Term, prefix: str) -> Term:
    """Rename every variable apart by prefixing it."""
    return substitute(term, {v: Var(f"{prefix}{v}") for v in variables(term)})


def match_syntactic(pattern: Term, term: Term, subst: Optional[Substitution] = None) -> Optional[Substitution]:
    """Plain syntactic matching. Returns an extended copy of `subst`, or None."""
    out: Substitution = dict(subst or {})
    if _match_into(pattern, term, out):
        return out
    return None


def _match_into(pattern: Term, term: Term, subst: Substitution) -> bool:
    if isinstance(pattern, Var):
        bound = subst.get(pattern.name)
        if bound is None:
            subst[pattern.name] = term
            return True
        return bound == term
    if isinstance(pattern, App):
        if not isinstance(term, App) or term.symbol != pattern.symbol or len(term.args) != len(pattern.args):
            return False
        return all(_match_into(p, t, subst) for p, t in zip(pattern.args, term.args))
    return pattern == term


def unify(left: Term, right: Term) -> Optional[Substitution]:
    """Syntactic most-general unifier (Robinson, with occurs check)."""
    subst: Substitution = {}
    work = [(left, right)]
    while work:
        a, b = work.pop()
        a = _walk(a, subst)
        b = _walk(b, subst)
        if a == b:
            continue
        if isinstance(a, Var):
            if a.name in variables(_resolve(b, subst)):
                return None
            subst[a.name] = b
            continue
        if isinstance(b, Var):
            work.append((b, a))
            continue
        if isinstance(a, App) and isinstance(b, App):
            if a.symbol != b.symbol or len(a.args) != len(b.args):
                return None
            work.extend(zip(a.args, b.args))
            continue
        return None
    return {k: _resolve(v, subst) for k, v in subst.items()}


def _walk(term: Term, subst: Substitution) -> Term:
    while isinstance(term, Var) and term.name in subst:
        term = subst[term.name]
    return term


def _resolve(term: Term, subst: Substitution) -> Term:
    term = _walk(term, subst)
    if isinstance(term, App) and term.args:
        return App(term.symbol, tuple(_resolve(a, subst) for a in term.args))
    return term


# ============================================================================
# THEORY
# ============================================================================

@dataclass(frozen=True)
class FunctionSymbol:
    name: str
    arity: int

    def __str__(self):
        return f"{self.name}/{self.arity}"


@dataclass(frozen=True)
class Equation:
    lhs: App
    rhs: Term

    def __str__(self):
        return f"{self.lhs} = {self.rhs}"


class Theory:
    """
    Function symbols plus oriented equations.

    The theory is built once during the declaration phase and is read-only
    after close(). normalize() rewrites innermost-first, left to right, until
    no equation applies. Confluence is the model author's responsibility; the
    engine only guarantees termination by a hard rewrite budget of
    `rewrite_budget * (len(equations) + 1)` steps per subterm of the input,
    so large terminating terms are not mistaken for divergence.
    """

    def __init__(self, rewrite_budget: int = 64):
        self.symbols: Dict[str, FunctionSymbol] = {}
        self.equations: List[Equation] = []
        self.rewrite_budget = rewrite_budget
        self._closed = False
        self._install_builtins()

    def _install_builtins(self):
        self.declare_symbol(PAIR, 2)
        self.declare_symbol(FST, 1)
        self.declare_symbol(SND, 1)
        x, y = Var("x"), Var("y")
        self.declare_equation(App(FST, (pair(x, y),)), x)
        self.declare_equation(App(SND, (pair(x, y),)), y)

    # -----------------------------
    # Declaration phase
    # -----------------------------
    def declare_symbol(self, name: str, arity: int, location: Optional[tuple] = None) -> FunctionSymbol:
        self._check_open()
        if name in self.symbols:
            raise DuplicateSymbol(f"Function symbol '{name}' is already declared as {self.symbols[name]}.",
                                  declaration=name, location=location)
        if arity < 0:
            raise UnknownSymbol(f"Function symbol '{name}' has negative arity {arity}.",
                                declaration=name, location=location)
        sym = FunctionSymbol(name, arity)
        self.symbols[name] = sym
        return sym

    def declare_equation(self, lhs: Term, rhs: Term, location: Optional[tuple] = None) -> Equation:
        self._check_open()
        label = f"{lhs} = {rhs}"
        self.check_term(lhs, declaration=label, location=location)
        self.check_term(rhs, declaration=label, location=location)

        if not isinstance(lhs, App):
            raise NoMatch(f"Left-hand side of equation '{label}' must be a function application.",
                          declaration=label, location=location)

        extra = variables(rhs) - variables(lhs)
        if extra:
            raise UnboundVariable(
                f"Right-hand side of equation '{label}' introduces variables absent from the left: {sorted(extra)}.",
                declaration=label, location=location)

        eq = Equation(lhs, rhs)
        self.equations.append(eq)
        try:
            self._check_fires(eq, label, location)
        except Exception:
            self.equations.pop()
            raise
        return eq

    def _check_fires(self, eq: Equation, label: str, location: Optional[tuple]):
        # Instantiate with skolem constants: the equation must rewrite its own instance.
        skolem = {v: Const(f"$sk{i}") for i, v in enumerate(sorted(variables(eq.lhs)))}
        left = self.normalize(substitute(eq.lhs, skolem))
        right = self.normalize(substitute(eq.rhs, skolem))
        if left != right:
            raise NoMatch(
                f"Equation '{label}' can never fire: its instance normalizes to {left}, expected {right}.",
                declaration=label, location=location)

    def close(self) -> "Theory":
        self._closed = True
        return self

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self):
        if self._closed:
            raise RuntimeError("Theory is closed; declarations are only allowed during the declaration phase.")

    def has_symbol(self, name: str) -> bool:
        return name in self.symbols

    def check_term(self, term: Term, declaration: Optional[str] = None, location: Optional[tuple] = None):
        """Every application must use a declared symbol at its declared arity."""
        for app in applications(term):
            sym = self.symbols.get(app.symbol)
            if sym is None:
                raise UnknownSymbol(f"Undeclared function symbol '{app.symbol}'.",
                                    declaration=declaration, location=location)
            if sym.arity != len(app.args):
                raise UnknownSymbol(
                    f"Function symbol '{app.symbol}' used with {len(app.args)} argument(s), declared {sym}.",
                    declaration=declaration, location=location)

    # -----------------------------
    # Rewriting
    # -----------------------------
    @property
    def step_limit(self) -> int:
        return self.rewrite_budget * (len(self.equations) + 1)

    def normalize(self, term: Term) -> Term:
        counter = [0]
        size = sum(1 for _ in subterms(term))
        return self._normalize(term, counter, self.step_limit * size)

    def _normalize(self, term: Term, counter: List[int], limit: int) -> Term:
        if not isinstance(term, App):
            return term
        current: Term = self._with_normal_args(term, counter, limit)
        while isinstance(current, App):
            reduct = self._rewrite_root(current)
            if reduct is None:
                return current
            counter[0] += 1
            if counter[0] > limit:
                raise TheoryDivergence(
                    f"Rewriting did not terminate within {limit} steps (last term: {current}).")
            current = self._with_normal_args(reduct, counter, limit) if isinstance(reduct, App) else reduct
        return current

    def _with_normal_args(self, term: App, counter: List[int], limit: int) -> App:
        if not term.args:
            return term
        args = tuple(self._normalize(a, counter, limit) for a in term.args)
        return term if args == term.args else App(term.symbol, args)

    def _rewrite_root(self, term: App) -> Optional[Term]:
        for eq in self.equations:
            if eq.lhs.symbol != term.symbol:
                continue
            subst = match_syntactic(eq.lhs, term)
            if subst is not None:
                return substitute(eq.rhs, subst)
        return None

    def is_normal(self, term: Term) -> bool:
        return self.normalize(term) == term

    # -----------------------------
    # Matching modulo the theory
    # -----------------------------
    def match(self, pattern: Term, term: Term, subst: Optional[Substitution] = None) -> Substitution:
        """
        Match `pattern` against `term` after normalizing both.

        Returns the substitution for the pattern variables (extending `subst`)
        or raises NoMatch.
        """
        result = match_syntactic(self.normalize(pattern), self.normalize(term), subst)
        if result is None:
            raise NoMatch(f"Pattern {pattern} does not match {term}.")
        return result

    def try_match(self, pattern: Term, term: Term, subst: Optional[Substitution] = None) -> Optional[Substitution]:
        try:
            return self.match(pattern, term, subst)
        except NoMatch:
            return None

    def equal(self, left: Term, right: Term) -> bool:
        return self.normalize(left) == self.normalize(right)

    def __repr__(self):
        return f"Theory({len(self.symbols)} symbols, {len(self.equations)} equations)"

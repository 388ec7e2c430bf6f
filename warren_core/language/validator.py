"""
Warren Validator - Declaration Phase

Registers every declaration of a Model and checks it:
- Theory: function symbols and equations (duplicates, unknown symbols, arity, rhs variables)
- Types and grants (duplicates, unknown types)
- Syscalls and attacks (duplicates, override targets, passive-attack effects, recursion)
- Constants, channels and files (name clashes, type kinds, initial file content)
- Process templates and the system composition (templates, arguments, parameter types)

Errors are collected across the whole phase and raised together, so one run
shows every declaration problem.
"""

from typing import Callable, Dict, List, Optional, Any
from dataclasses import dataclass, field

from .ast import (
    Model, Expression, Ident, StrLit, Apply, TupleExpr, TypeKind,
    ConstantDecl, ProcessDecl, SystemDecl,
)
from .access import AccessPolicy
from .errors import (
    CompileError, CompilationError, DuplicateSymbol, MalformedSystem, TypeMismatch,
    UnboundVariable, UnknownSymbol, UnknownType, ArityMismatch,
)
from .store import ATTACKER_STORE, StoreRegistry
from .syscalls import SyscallTable
from .terms import Const, Lit, App, Term, Theory, Var, tuple_term


@dataclass
class Declarations:
    """Everything the declaration phase produced; read-only afterwards."""
    theory: Theory
    policy: AccessPolicy
    syscalls: SyscallTable
    stores: StoreRegistry
    constants: Dict[str, ConstantDecl] = field(default_factory=dict)
    processes: Dict[str, ProcessDecl] = field(default_factory=dict)
    system: Optional[SystemDecl] = None


def equation_term(expr: Expression) -> Term:
    """Equation sides: identifiers are variables, nullary symbols are written f()."""
    if isinstance(expr, Ident):
        return Var(expr.name)
    if isinstance(expr, StrLit):
        return Lit(expr.value)
    if isinstance(expr, Apply):
        return App(expr.name, tuple(equation_term(a) for a in expr.args))
    if isinstance(expr, TupleExpr):
        return tuple_term([equation_term(i) for i in expr.items])
    raise UnknownSymbol(f"Unsupported expression in equation: {expr.__class__.__name__}",
                        location=getattr(expr, "location", None))


class ModelValidator:
    """
    Runs the declaration phase and returns Declarations.

    Acts as the gatekeeper before elaboration: nothing is elaborated unless
    every declaration is well-formed.
    """

    def __init__(self, rewrite_budget: int = 64):
        self.rewrite_budget = rewrite_budget
        self.errors: List[CompileError] = []

    def validate(self, model: Model) -> Declarations:
        """Main validation entry point."""
        self.errors = []
        theory = Theory(rewrite_budget=self.rewrite_budget)
        decls = Declarations(
            theory=theory,
            policy=AccessPolicy(),
            syscalls=SyscallTable(),
            stores=StoreRegistry(theory),
        )

        # 1) Theory
        for f in model.functions:
            self._attempt(theory.declare_symbol, f.name, f.arity, f.location)
        for eq in model.equations:
            self._attempt(self._declare_equation, theory, eq)

        # 2) Types and grants
        for t in model.types:
            self._attempt(decls.policy.declare_type, t.name, t.kind, t.location)
        for g in model.grants:
            self._attempt(decls.policy.declare_grant, g.subject, g.object, g.ops, g.location)
        for g in model.attacker_grants:
            self._attempt(decls.policy.declare_attacker_grant, g.subject, g.ops, g.location)

        # 3) Syscalls and attacks
        for s in model.syscalls:
            self._attempt(self._check_not_symbol, theory, s.name, s.location)
            self._attempt(decls.syscalls.declare_syscall, s)
        for a in model.attacks:
            self._attempt(self._check_not_symbol, theory, a.name, a.location)
            self._attempt(decls.syscalls.declare_attack, a)
        attack_names = {a.name for a in model.attacks}
        for g in model.attacker_grants:
            for op in g.ops:
                d = decls.syscalls.get(op)
                if d is None and op in attack_names:
                    continue  # its declaration already failed
                if d is None or not d.is_attack:
                    self.errors.append(UnknownSymbol(
                        f"Attacker grant for '{g.subject}' names '{op}', which is not a declared attack.",
                        declaration=g.subject, location=g.location))
        self.errors.extend(decls.syscalls.check_recursion())

        # 4) Constants, channels and files
        for c in model.constants:
            self._attempt(self._declare_constant, decls, c)
        for ch in model.channels:
            self._attempt(self._declare_store, decls, ch.name, ch.type_name, None, ch.location)
        for fd in model.files:
            self._attempt(self._declare_store, decls, fd.name, fd.type_name, fd.content, fd.location)

        # 5) Process templates
        for p in model.processes:
            self._attempt(self._declare_process, decls, p)

        # 6) System composition
        self._attempt(self._check_system, decls, model.system)

        if self.errors:
            raise CompilationError(self.errors)

        theory.close()
        decls.system = model.system
        return decls

    def _attempt(self, fn: Callable, *args) -> Any:
        try:
            return fn(*args)
        except CompileError as e:
            self.errors.append(e)
            return None

    # -----------------------------
    # Individual declarations
    # -----------------------------
    def _declare_equation(self, theory: Theory, eq):
        lhs = equation_term(eq.lhs)
        rhs = equation_term(eq.rhs)
        theory.declare_equation(lhs, rhs, eq.location)

    def _check_not_symbol(self, theory: Theory, name: str, location: Optional[tuple]):
        if theory.has_symbol(name):
            raise DuplicateSymbol(f"'{name}' is already declared as a function symbol.",
                                  declaration=name, location=location)

    def _check_global_name(self, decls: Declarations, name: str, location: Optional[tuple]):
        clash = None
        if decls.theory.has_symbol(name):
            clash = "function symbol"
        elif name in decls.syscalls:
            clash = "syscall or attack"
        elif name in decls.constants:
            clash = "constant"
        elif name in decls.stores:
            clash = "channel or file" if name != ATTACKER_STORE else "reserved attacker store"
        if clash:
            raise DuplicateSymbol(f"'{name}' is already declared ({clash}).", declaration=name, location=location)

    def _declare_constant(self, decls: Declarations, c: ConstantDecl):
        self._check_global_name(decls, c.name, c.location)
        decls.constants[c.name] = c

    def _declare_store(self, decls: Declarations, name: str, type_name: str,
                       content: Optional[Expression], location: Optional[tuple]):
        self._check_global_name(decls, name, location)
        kind = decls.policy.kind_of(type_name)
        if kind is None:
            raise UnknownType(f"Type '{type_name}' of '{name}' is not declared.", declaration=name, location=location)
        expected = TypeKind.FILESYS if content is not None else TypeKind.CHANNEL
        if kind != expected:
            raise TypeMismatch(f"'{name}' is declared with type '{type_name}' of kind {kind.value}, "
                               f"expected {expected.value}.", declaration=name, location=location)
        initial = [self._ground_term(decls, content, name)] if content is not None else []
        decls.stores.declare(name, type_name, kind, initial)

    def _ground_term(self, decls: Declarations, expr: Expression, owner: str) -> Term:
        """Initial file content: literals, public constants and symbol applications only."""
        if isinstance(expr, StrLit):
            return Lit(expr.value)
        if isinstance(expr, TupleExpr):
            return tuple_term([self._ground_term(decls, i, owner) for i in expr.items])
        if isinstance(expr, Ident):
            c = decls.constants.get(expr.name)
            if c is not None and not c.fresh:
                return Const(expr.name)
            sym = decls.theory.symbols.get(expr.name)
            if sym is not None and sym.arity == 0:
                return App(expr.name, ())
            raise UnboundVariable(f"'{expr.name}' in the initial content of '{owner}' is not a public constant.",
                                  declaration=owner, location=expr.location)
        if isinstance(expr, Apply):
            term = App(expr.name, tuple(self._ground_term(decls, a, owner) for a in expr.args))
            decls.theory.check_term(term, declaration=owner, location=expr.location)
            return term
        raise UnknownSymbol(f"Unsupported expression in the initial content of '{owner}'.", declaration=owner)

    def _declare_process(self, decls: Declarations, p: ProcessDecl):
        if p.name in decls.processes:
            raise DuplicateSymbol(f"Process template '{p.name}' is already declared.",
                                  declaration=p.name, location=p.location)
        kind = decls.policy.kind_of(p.type_name)
        if kind is None:
            raise UnknownType(f"Type '{p.type_name}' of process '{p.name}' is not declared.",
                              declaration=p.name, location=p.location)
        if kind != TypeKind.PROCESS:
            raise TypeMismatch(f"Process '{p.name}' has type '{p.type_name}' of kind {kind.value}.",
                               declaration=p.name, location=p.location)
        seen = set()
        for param in p.params:
            if param.name in seen:
                raise DuplicateSymbol(f"Parameter '{param.name}' appears twice in process '{p.name}'.",
                                      declaration=p.name, location=param.location)
            seen.add(param.name)
            pkind = decls.policy.kind_of(param.type_name)
            if pkind is None:
                raise UnknownType(f"Type '{param.type_name}' of parameter '{param.name}' is not declared.",
                                  declaration=p.name, location=param.location)
            if pkind == TypeKind.PROCESS:
                raise TypeMismatch(f"Parameter '{param.name}' of '{p.name}' must be a channel or file type.",
                                   declaration=p.name, location=param.location)
        decls.processes[p.name] = p

    def _check_system(self, decls: Declarations, system: Optional[SystemDecl]):
        if system is None:
            raise MalformedSystem("The model has no system declaration.")
        if not system.instances:
            raise MalformedSystem("The system composes no process instances.", location=system.location)
        if not system.lemmas:
            raise MalformedSystem("The system declares no lemmas.", location=system.location)

        names = set()
        for idx, inst in enumerate(system.instances):
            label = inst.name or f"{inst.template}#{idx}"
            if label in names:
                self.errors.append(DuplicateSymbol(f"Process instance '{label}' is declared twice.",
                                                   declaration=label, location=inst.location))
            names.add(label)

            template = decls.processes.get(inst.template)
            if template is None:
                self.errors.append(UnknownSymbol(f"No process template named '{inst.template}'.",
                                                 declaration=label, location=inst.location))
                continue
            if len(inst.args) != len(template.params):
                self.errors.append(ArityMismatch(
                    f"'{inst.template}' expects {len(template.params)} channel/file argument(s), got {len(inst.args)}.",
                    declaration=label, location=inst.location))
                continue
            for param, arg in zip(template.params, inst.args):
                if arg not in decls.stores or arg == ATTACKER_STORE:
                    self.errors.append(UnknownSymbol(f"No channel or file named '{arg}'.",
                                                     declaration=label, location=inst.location))
                    continue
                actual = decls.stores.get(arg).type_name
                if actual != param.type_name:
                    self.errors.append(TypeMismatch(
                        f"'{arg}' has type '{actual}' but parameter '{param.name}' of '{inst.template}' "
                        f"expects '{param.type_name}'.", declaration=label, location=inst.location))

        lemma_names = set()
        for lemma in system.lemmas:
            if lemma.name in lemma_names:
                self.errors.append(DuplicateSymbol(f"Lemma '{lemma.name}' is declared twice.",
                                                   declaration=lemma.name, location=lemma.location))
            lemma_names.add(lemma.name)

"""
Warren Elaborator - commands to transition graphs

Turns one process instance (a template applied to concrete channels/files)
into a TransitionGraph:
- every source variable gets a unique IR name (`name.N`)
- calls are inlined by value; syscalls with applicable active attacks become
  CallSite -> Alternative(normal | attack:<name>) -> body -> Join
- branches and until-arms are first-match: each Guard also excludes the
  conditions of every earlier arm
- `new` gets a nonce id from the allocator shared by the whole system
- store operations are checked against the access policy

Elaboration of an instance stops at its first error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .ast import (
    Apply, Bind, Branch, Call, Command, Comparison, Emit as EmitCmd, Expression, GuardedCommand,
    Ident, New, ProcessDecl, Repeat, Return, Seq, Skip, StoreOp, StoreOpKind, StrLit, TupleExpr, TypeKind,
)
from .errors import (
    AccessViolation, CompileError, DuplicateBinding, MisplacedReturn, RecursiveSyscall, TypeMismatch,
    UnboundVariable, UnknownSymbol,
)
from .ir import (
    Alternative, Assign, CallSite, Choice, Condition, Consume, Emit, End, EventSite, Fresh, Guard,
    Insert, Join, LoopHead, Node, ProcessInstance, Read, Remove, Start, TransitionGraph,
)
from .syscalls import Definition
from .terms import App, Const, Lit, Term, Var, tuple_term
from .validator import Declarations


def fresh_constant_var(name: str) -> str:
    """IR variable holding the value of a fresh constant, generated at system start."""
    return f"~{name}"


class NonceAllocator:
    """Hands out nonce ids; one allocator per compiled system."""

    def __init__(self):
        self.next_id = 0

    def allocate(self) -> int:
        nid = self.next_id
        self.next_id += 1
        return nid


@dataclass(frozen=True)
class Binding:
    kind: str  # "term" | "store"
    target: str  # IR variable or store instance name


class Scope:
    """Write-once bindings; inner scopes may shadow outer ones."""

    def __init__(self, parent: Optional["Scope"] = None):
        self.parent = parent
        self.bindings: Dict[str, Binding] = {}

    def child(self) -> "Scope":
        return Scope(self)

    def lookup(self, name: str) -> Optional[Binding]:
        scope = self
        while scope is not None:
            if name in scope.bindings:
                return scope.bindings[name]
            scope = scope.parent
        return None

    def declare(self, name: str, binding: Binding):
        if name in self.bindings:
            raise DuplicateBinding(f"'{name}' is already bound in this scope.")
        self.bindings[name] = binding


@dataclass
class Frame:
    """The body being elaborated: process main (definition=None) or an inlined call."""
    definition: Optional[Definition] = None
    result_var: Optional[str] = None
    returns: List[int] = field(default_factory=list)
    call_stack: Tuple[str, ...] = ()
    intercept: bool = True


Ends = List[int]


class ProcessElaborator:
    """Elaborates process instances against a set of validated declarations."""

    def __init__(self, decls: Declarations, nonces: NonceAllocator, notes: Optional[List[str]] = None):
        self.decls = decls
        self.theory = decls.theory
        self.policy = decls.policy
        self.syscalls = decls.syscalls
        self.stores = decls.stores
        self.nonces = nonces
        self.notes = notes if notes is not None else []

    # ========================================================================
    # INSTANCES
    # ========================================================================

    def elaborate(self, template: ProcessDecl, instance: str, channels: Dict[str, str]) -> ProcessInstance:
        self.instance = instance
        self.process_type = template.type_name
        self.graph = TransitionGraph()
        self.events: List[EventSite] = []
        self._path: List[str] = []
        self._counters: Dict[str, int] = {}

        try:
            scope = Scope()
            for param in template.params:
                actual = self.stores.get(channels[param.name])
                if actual.type_name != param.type_name:
                    raise TypeMismatch(
                        f"'{actual.name}' has type '{actual.type_name}', parameter '{param.name}' "
                        f"expects '{param.type_name}'.")
                scope.declare(param.name, Binding("store", actual.name))

            frame = Frame()
            ends = self._append(Start(), [])
            self._path.append("vars")
            for i, v in enumerate(template.vars):
                self._path.append(str(i))
                ends = self._bind(v.name, v.init, ends, scope, frame)
                self._path.pop()
            self._path[-1] = "main"
            ends = self._command(template.main, ends, scope, frame)
            self._path.pop()
            if ends:
                self._append(End(), ends)
        except CompileError as e:
            raise e.at(declaration=instance, position=self._pos())

        return ProcessInstance(
            name=instance,
            template=template.name,
            type_name=template.type_name,
            channels=dict(channels),
            graph=self.graph,
            events=self.events,
        )

    # ========================================================================
    # GRAPH HELPERS
    # ========================================================================

    def _pos(self) -> str:
        return f"{self.instance}/{'.'.join(self._path)}"

    def _append(self, node: Node, ends: Ends) -> Ends:
        node.position = self._pos()
        idx = self.graph.add(node)
        for e in ends:
            self.graph.connect(e, idx)
        return [idx]

    def _fresh_var(self, name: str) -> str:
        n = self._counters.get(name, 0)
        self._counters[name] = n + 1
        return f"{name}.{n}"

    # ========================================================================
    # COMMANDS
    # ========================================================================

    def _command(self, cmd: Command, ends: Ends, scope: Scope, frame: Frame) -> Ends:
        if isinstance(cmd, Skip):
            return ends
        if isinstance(cmd, Seq):
            for i, c in enumerate(cmd.commands):
                self._path.append(str(i))
                ends = self._command(c, ends, scope, frame)
                self._path.pop()
            return ends
        if isinstance(cmd, Bind):
            return self._bind(cmd.var, cmd.expr, ends, scope, frame)
        if isinstance(cmd, New):
            var = self._fresh_var(cmd.var)
            ends = self._append(Fresh(var=var, nonce=self.nonces.allocate()), ends)
            scope.declare(cmd.var, Binding("term", var))
            return ends
        if isinstance(cmd, Branch):
            choice = self._append(Choice(), ends)
            return self._arms(cmd.arms, choice, scope, frame)[0]
        if isinstance(cmd, Repeat):
            return self._repeat(cmd, ends, scope, frame)
        if isinstance(cmd, Call):
            return self._call(cmd.name, cmd.args, ends, scope, frame, result_var=None)
        if isinstance(cmd, EmitCmd):
            return self._emit(cmd.event, ends, scope, frame)
        if isinstance(cmd, StoreOp):
            return self._store_op(cmd, ends, scope, frame)
        if isinstance(cmd, Return):
            return self._return(cmd, ends, scope, frame)
        raise UnknownSymbol(f"Unsupported command: {cmd.__class__.__name__}", location=cmd.location)

    def _bind(self, name: str, expr: Expression, ends: Ends, scope: Scope, frame: Frame) -> Ends:
        if name in scope.bindings:
            raise DuplicateBinding(f"'{name}' is already bound in this scope.")
        if isinstance(expr, Apply) and not self.theory.has_symbol(expr.name) and expr.name in self.syscalls:
            var = self._fresh_var(name)
            ends = self._call(expr.name, expr.args, ends, scope, frame, result_var=var)
        else:
            term, ends = self._term(expr, ends, scope, frame)
            var = self._fresh_var(name)
            ends = self._append(Assign(var=var, term=term), ends)
        scope.declare(name, Binding("term", var))
        return ends

    def _arms(self, arms: List[GuardedCommand], choice: Ends, scope: Scope,
              frame: Frame) -> Tuple[Ends, List[Tuple[Condition, ...]]]:
        """First-match arms below `choice`; returns their ends and the live guard groups."""
        out: Ends = []
        earlier: List[Tuple[Condition, ...]] = []
        for i, arm in enumerate(arms):
            self._path.append(f"arm{i}")
            conditions = self._conditions(arm.conditions, scope, frame)
            if conditions is None:
                self.notes.append(f"{self._pos()}: guard compares literals and is always false; the arm can never be taken")
                self._path.pop()
                continue
            guard = self._append(Guard(conditions=conditions, excluded=tuple(earlier)), choice)
            out += self._command(arm.command, guard, scope.child(), frame)
            earlier.append(conditions)
            self._path.pop()
        return out, earlier

    def _repeat(self, cmd: Repeat, ends: Ends, scope: Scope, frame: Frame) -> Ends:
        head = self._append(LoopHead(), ends)
        body_scope = scope.child()
        self._path.append("body")
        body_ends = self._command(cmd.body, head, body_scope, frame)
        self._path[-1] = "until"
        choice = self._append(Choice(), body_ends)
        out, earlier = self._arms(cmd.until, choice, body_scope, frame)

        # no until-arm holds: back to the head
        self._path[-1] = "again"
        again = self._append(Guard(conditions=(), excluded=tuple(earlier)), choice)
        self.graph.connect(again[0], head[0])
        self._path.pop()
        return out

    def _conditions(self, comparisons: List[Comparison], scope: Scope,
                    frame: Frame) -> Optional[Tuple[Condition, ...]]:
        """None when the guard is constant-false (two distinct literals compared equal)."""
        out: List[Condition] = []
        for cmp in comparisons:
            left, _ = self._term(cmp.left, None, scope, frame)
            right, _ = self._term(cmp.right, None, scope, frame)
            if isinstance(left, Lit) and isinstance(right, Lit):
                if (left == right) == cmp.negated:
                    return None
                continue
            out.append(Condition(left, right, equal=not cmp.negated))
        return tuple(out)

    def _emit(self, event: Apply, ends: Ends, scope: Scope, frame: Frame) -> Ends:
        args: List[Term] = []
        for a in event.args:
            term, ends = self._term(a, ends, scope, frame)
            args.append(term)
        term = App(event.name, tuple(args))
        index = len(self.events)
        ends = self._append(Emit(term=term, event_index=index), ends)
        self.events.append(EventSite(self.instance, index, ends[0], event.name, len(args), term))
        return ends

    def _return(self, cmd: Return, ends: Ends, scope: Scope, frame: Frame) -> Ends:
        if frame.definition is None:
            raise MisplacedReturn("'return' is only allowed inside syscall and attack bodies.",
                                  location=cmd.location)
        term, ends = self._term(cmd.expr, ends, scope, frame)
        if frame.result_var is not None:
            ends = self._append(Assign(var=frame.result_var, term=term), ends)
        frame.returns.extend(ends)
        return []

    # ========================================================================
    # STORES
    # ========================================================================

    def _resolve_store(self, name: str, scope: Scope):
        b = scope.lookup(name)
        if b is not None:
            if b.kind != "store":
                raise TypeMismatch(f"'{name}' is a value, not a channel or file.")
            return self.stores.get(b.target)
        if name in self.stores:
            return self.stores.get(name)
        raise UnknownSymbol(f"No channel or file named '{name}'.")

    def _store_op(self, cmd: StoreOp, ends: Ends, scope: Scope, frame: Frame) -> Ends:
        store = self._resolve_store(cmd.target, scope)
        if frame.definition is None:
            self.policy.require(self.process_type, store.type_name, cmd.op.value, position=self._pos())

        # a file holds exactly one content fact; only the built-in write replaces it
        builtin = frame.definition is not None and frame.definition.kind == "builtin"
        if store.kind == TypeKind.FILESYS and cmd.op != StoreOpKind.READ and not builtin:
            raise TypeMismatch(
                f"'{cmd.op.value}' cannot be used on file '{store.name}'; use 'write' to change its content.")

        if cmd.op in (StoreOpKind.INSERT, StoreOpKind.REMOVE):
            term, ends = self._term(cmd.term, ends, scope, frame)
            node = Insert(store=store.name, term=term) if cmd.op == StoreOpKind.INSERT \
                else Remove(store=store.name, term=term)
            return self._append(node, ends)

        if cmd.op == StoreOpKind.READ and store.kind != TypeKind.FILESYS:
            raise TypeMismatch(f"'read' needs a file, '{store.name}' is a {store.kind.value}.")
        binds: Dict[str, str] = {}
        pattern, _ = self._term(cmd.term, None, scope, frame, pattern_binds=binds)
        node = Consume(store=store.name, pattern=pattern, binds=tuple(binds.values())) \
            if cmd.op == StoreOpKind.CONSUME else Read(store=store.name, pattern=pattern, binds=tuple(binds.values()))
        ends = self._append(node, ends)
        for name, var in binds.items():
            scope.declare(name, Binding("term", var))
        return ends

    # ========================================================================
    # CALLS
    # ========================================================================

    def _call(self, name: str, arg_exprs: List[Expression], ends: Ends, scope: Scope, frame: Frame,
              result_var: Optional[str]) -> Ends:
        d = self.syscalls.get(name)
        if d is None:
            raise UnknownSymbol(f"'{name}' is neither a function symbol, a syscall nor an attack.")
        if d.kind == "active":
            raise AccessViolation(
                f"Active attack '{name}' cannot be invoked directly; it replaces '{d.target}' at authorised call sites.",
                position=self._pos())
        self.syscalls.check_arity(d, len(arg_exprs), self._pos())
        if name in frame.call_stack:
            raise RecursiveSyscall(f"Recursive call chain: {' -> '.join(frame.call_stack + (name,))}.")

        args: List[Tuple[str, object]] = []
        for a in arg_exprs:
            store = self._store_arg(a, scope)
            if store is not None:
                args.append(("store", store))
            else:
                term, ends = self._term(a, ends, scope, frame)
                args.append(("term", term))

        object_types = [self.stores.get(s).type_name for kind, s in args if kind == "store"]
        object_types = [t for t in object_types if t is not None]
        subjects = [self.process_type] + object_types

        if frame.definition is None:
            if d.kind == "passive":
                self.policy.require_attack(subjects, name, position=self._pos())
            else:
                for object_type in object_types or [None]:
                    self.policy.require(self.process_type, object_type, name, position=self._pos())

        plan = self.syscalls.plan_call(d, subjects, self.policy, intercept=frame.intercept)
        if len(plan) == 1:
            return self._inline(d, args, ends, frame, result_var)

        site = self._append(CallSite(callee=name), ends)
        out: Ends = []
        for alt in plan:
            self._path.append(alt.tag)
            entry = self._append(Alternative(tag=alt.tag), site)
            out += self._inline(alt.definition, args, entry, frame, result_var)
            self._path.pop()
        return self._append(Join(), out) if out else []

    def _store_arg(self, expr: Expression, scope: Scope) -> Optional[str]:
        if not isinstance(expr, Ident):
            return None
        b = scope.lookup(expr.name)
        if b is not None:
            return b.target if b.kind == "store" else None
        if expr.name in self.stores and expr.name not in self.decls.constants:
            return expr.name
        return None

    def _inline(self, d: Definition, args: List[Tuple[str, object]], ends: Ends, frame: Frame,
                result_var: Optional[str]) -> Ends:
        scope = Scope()
        self._path.append(d.name)
        for param, (kind, value) in zip(d.params, args):
            if kind == "store":
                scope.declare(param, Binding("store", value))
            else:
                var = self._fresh_var(param)
                ends = self._append(Assign(var=var, term=value), ends)
                scope.declare(param, Binding("term", var))

        inner = Frame(
            definition=d,
            result_var=result_var,
            call_stack=frame.call_stack + (d.name,),
            intercept=frame.intercept and not d.is_attack,
        )
        fall = self._command(d.body, ends, scope, inner)
        if result_var is not None and fall:
            raise UnboundVariable(f"'{d.name}' can finish without returning a value, but its result is used.")
        self._path.pop()
        return fall + inner.returns

    # ========================================================================
    # TERMS
    # ========================================================================

    def _term(self, expr: Expression, ends: Optional[Ends], scope: Scope, frame: Frame,
              pattern_binds: Optional[Dict[str, str]] = None) -> Tuple[Term, Optional[Ends]]:
        """
        Build the term for `expr`.

        Calls nested in the expression are hoisted (left to right) onto `ends`;
        `ends=None` forbids them (guards, patterns). With `pattern_binds`,
        unbound identifiers become pattern variables instead of errors.
        """
        if isinstance(expr, StrLit):
            return Lit(expr.value), ends
        if isinstance(expr, Ident):
            return self._ident(expr.name, scope, pattern_binds), ends
        if isinstance(expr, TupleExpr):
            items = []
            for item in expr.items:
                t, ends = self._term(item, ends, scope, frame, pattern_binds)
                items.append(t)
            return tuple_term(items), ends
        if isinstance(expr, Apply):
            sym = self.theory.symbols.get(expr.name)
            if sym is not None:
                if sym.arity != len(expr.args):
                    raise UnknownSymbol(
                        f"Function symbol '{expr.name}' used with {len(expr.args)} argument(s), declared {sym}.")
                args = []
                for a in expr.args:
                    t, ends = self._term(a, ends, scope, frame, pattern_binds)
                    args.append(t)
                return App(expr.name, tuple(args)), ends
            if expr.name in self.syscalls:
                if ends is None:
                    raise UnknownSymbol(f"Call to '{expr.name}' is not allowed in a guard or pattern.")
                var = self._fresh_var(f"{expr.name}$ret")
                ends = self._call(expr.name, expr.args, ends, scope, frame, result_var=var)
                return Var(var), ends
            raise UnknownSymbol(f"'{expr.name}' is neither a function symbol, a syscall nor an attack.")
        raise UnknownSymbol(f"Unsupported expression: {expr.__class__.__name__}")

    def _ident(self, name: str, scope: Scope, pattern_binds: Optional[Dict[str, str]]) -> Term:
        b = scope.lookup(name)
        if b is not None:
            if b.kind == "store":
                raise TypeMismatch(f"Channel or file '{name}' cannot be used as a value.")
            return Var(b.target)
        if pattern_binds is not None and name in pattern_binds:
            return Var(pattern_binds[name])
        const = self.decls.constants.get(name)
        if const is not None:
            return Var(fresh_constant_var(name)) if const.fresh else Const(name)
        if name in self.stores:
            raise TypeMismatch(f"Channel or file '{name}' cannot be used as a value.")
        sym = self.theory.symbols.get(name)
        if sym is not None and sym.arity == 0:
            return App(name, ())
        if pattern_binds is not None:
            pattern_binds[name] = self._fresh_var(name)
            return Var(pattern_binds[name])
        raise UnboundVariable(f"'{name}' is not bound.")

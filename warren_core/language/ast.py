"""
Abstract Syntax Tree (AST) for Warren models

Defines the node types a front end hands to the compiler.
Each node represents a syntactic element of the language: the equational
theory, types and grants, syscalls and attacks, channels/files/constants,
process templates and the system with its lemmas.
"""

from dataclasses import dataclass, field, is_dataclass, fields
from typing import List, Optional
from enum import Enum


# ============================================================================
# BASE NODE
# ============================================================================

@dataclass(kw_only=True)
class ASTNode:
    """
    Base class for all AST nodes.

    Attributes:
        location: Source location (line, column) for error reporting
    """
    location: Optional[tuple] = None  # (line, column)

    def __repr__(self):
        return f"{self.__class__.__name__}(...)"


# ============================================================================
# ENUMS
# ============================================================================

class TypeKind(Enum):
    """Kinds of declared types"""
    PROCESS = "process"
    CHANNEL = "channel"
    FILESYS = "filesys"


class StoreOpKind(Enum):
    """Primitive operations on a channel/file store"""
    INSERT = "insert"     # add a fact
    REMOVE = "remove"     # delete an exact occurrence
    CONSUME = "consume"   # match a pattern, bind its variables, remove the fact
    READ = "read"         # match a pattern without removing (file content)


class LemmaKind(Enum):
    EXISTS_TRACE = "exists-trace"
    ALL_TRACES = "all-traces"
    REACHABLE = "reachable"
    CORRESPONDS = "corresponds"


# ============================================================================
# EXPRESSIONS
# ============================================================================

@dataclass
class Expression(ASTNode):
    """Base class for expressions"""
    pass


@dataclass
class Ident(Expression):
    """Identifier: variable, constant, channel or nullary symbol"""
    name: str

    def __repr__(self):
        return f"Ident({self.name})"


@dataclass
class StrLit(Expression):
    """String literal (e.g. "1")"""
    value: str

    def __repr__(self):
        return f'StrLit("{self.value}")'


@dataclass
class Apply(Expression):
    """
    Application: f(a, b)

    Resolved by the elaborator to a function symbol, a syscall or an attack.
    """
    name: str
    args: List[Expression] = field(default_factory=list)

    def __repr__(self):
        return f"{self.name}({', '.join(repr(a) for a in self.args)})"


@dataclass
class TupleExpr(Expression):
    """Tuple (a, b, c), right-nested into pairs"""
    items: List[Expression] = field(default_factory=list)

    def __repr__(self):
        return f"({', '.join(repr(i) for i in self.items)})"


# ============================================================================
# COMMANDS
# ============================================================================

@dataclass
class Command(ASTNode):
    """Base class for commands"""
    pass


@dataclass
class Comparison(ASTNode):
    """Guard atom: left = right, or left != right when negated"""
    left: Expression
    right: Expression
    negated: bool = False

    def __repr__(self):
        return f"{self.left!r} {'!=' if self.negated else '='} {self.right!r}"


@dataclass
class GuardedCommand(ASTNode):
    """
    [c1, c2, ...] -> command

    An empty condition list always holds.
    """
    conditions: List[Comparison]
    command: Command


@dataclass
class Bind(Command):
    """let var = expr"""
    var: str
    expr: Expression


@dataclass
class Seq(Command):
    """c1; c2; ..."""
    commands: List[Command] = field(default_factory=list)


@dataclass
class Branch(Command):
    """case [g1] -> c1 | [g2] -> c2 ... (first arm whose guard holds)"""
    arms: List[GuardedCommand] = field(default_factory=list)


@dataclass
class Repeat(Command):
    """repeat body until [g1] -> c1 | ..."""
    body: Command
    until: List[GuardedCommand] = field(default_factory=list)


@dataclass
class New(Command):
    """new var (fresh nonce)"""
    var: str


@dataclass
class Call(Command):
    """Syscall or attack invoked as a statement"""
    name: str
    args: List[Expression] = field(default_factory=list)


@dataclass
class Emit(Command):
    """event Tag(args)"""
    event: Apply


@dataclass
class StoreOp(Command):
    """insert/remove/consume/read on a channel or file"""
    op: StoreOpKind
    target: str
    term: Expression


@dataclass
class Return(Command):
    """return expr (only inside syscall and attack bodies)"""
    expr: Expression


@dataclass
class Skip(Command):
    pass


# ============================================================================
# DECLARATIONS
# ============================================================================

@dataclass
class FunctionDecl(ASTNode):
    """function senc/2"""
    name: str
    arity: int


@dataclass
class EquationDecl(ASTNode):
    """equation sdec(senc(x, y), y) = x (identifiers are variables)"""
    lhs: Expression
    rhs: Expression


@dataclass
class TypeDeclaration(ASTNode):
    """type client_t : process"""
    name: str
    kind: TypeKind


@dataclass
class AllowDecl(ASTNode):
    """allow subject [object] [op, ...]"""
    subject: str
    object: Optional[str]
    ops: List[str] = field(default_factory=list)


@dataclass
class AllowAttackDecl(ASTNode):
    """allow attack subject [attack, ...]"""
    subject: str
    ops: List[str] = field(default_factory=list)


@dataclass
class SyscallDecl(ASTNode):
    name: str
    params: List[str]
    body: Command


@dataclass
class AttackDecl(ASTNode):
    """
    Active attack (target set): replaces the body of `target` at authorised call sites.
    Passive attack (target None): explicitly invoked leakage.
    """
    name: str
    params: List[str]
    body: Command
    target: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.target is not None


@dataclass
class ConstantDecl(ASTNode):
    name: str
    fresh: bool = False


@dataclass
class ChannelDecl(ASTNode):
    name: str
    type_name: str


@dataclass
class FileDecl(ASTNode):
    name: str
    type_name: str
    content: Expression


@dataclass
class Param(ASTNode):
    name: str
    type_name: str


@dataclass
class VarDecl(ASTNode):
    name: str
    init: Expression


@dataclass
class ProcessDecl(ASTNode):
    name: str
    type_name: str
    params: List[Param] = field(default_factory=list)
    vars: List[VarDecl] = field(default_factory=list)
    main: Command = field(default_factory=Skip)


# ============================================================================
# LEMMAS
# ============================================================================

@dataclass
class Formula(ASTNode):
    """Base class for lemma formulas. Names starting with '#' are trace indices."""
    pass


@dataclass
class EventAtom(Formula):
    """Tag(args) @ #i"""
    event: Apply
    index: str


@dataclass
class Before(Formula):
    """#i < #j"""
    left: str
    right: str


@dataclass
class TermEquals(Formula):
    left: Expression
    right: Expression


@dataclass
class Not(Formula):
    operand: Formula


@dataclass
class And(Formula):
    operands: List[Formula] = field(default_factory=list)


@dataclass
class Or(Formula):
    operands: List[Formula] = field(default_factory=list)


@dataclass
class Implies(Formula):
    premise: Formula
    conclusion: Formula


@dataclass
class ForAll(Formula):
    variables: List[str]
    body: Formula


@dataclass
class Exists(Formula):
    variables: List[str]
    body: Formula


@dataclass
class LemmaDecl(ASTNode):
    """
    exists-trace / all-traces: `formula` is given explicitly.
    reachable: `events` must all occur, in the listed order.
    corresponds: `premise` ~> `conclusion`.
    """
    name: str
    kind: LemmaKind
    formula: Optional[Formula] = None
    events: List[Apply] = field(default_factory=list)
    premise: Optional[Apply] = None
    conclusion: Optional[Apply] = None


# ============================================================================
# SYSTEM / MODEL (Top-level)
# ============================================================================

@dataclass
class InstanceDecl(ASTNode):
    """template(ch1, ch2) in the system composition"""
    template: str
    args: List[str] = field(default_factory=list)
    name: Optional[str] = None


@dataclass
class SystemDecl(ASTNode):
    instances: List[InstanceDecl] = field(default_factory=list)
    lemmas: List[LemmaDecl] = field(default_factory=list)


@dataclass
class Model(ASTNode):
    """Top-level Warren program (after `load` directives have been resolved)"""
    functions: List[FunctionDecl] = field(default_factory=list)
    equations: List[EquationDecl] = field(default_factory=list)
    types: List[TypeDeclaration] = field(default_factory=list)
    grants: List[AllowDecl] = field(default_factory=list)
    attacker_grants: List[AllowAttackDecl] = field(default_factory=list)
    syscalls: List[SyscallDecl] = field(default_factory=list)
    attacks: List[AttackDecl] = field(default_factory=list)
    constants: List[ConstantDecl] = field(default_factory=list)
    channels: List[ChannelDecl] = field(default_factory=list)
    files: List[FileDecl] = field(default_factory=list)
    processes: List[ProcessDecl] = field(default_factory=list)
    system: Optional[SystemDecl] = None

    def __repr__(self):
        return f"Model({len(self.processes)} processes, {len(self.system.lemmas) if self.system else 0} lemmas)"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def visit_ast(node: ASTNode, visitor_func, _seen=None):
    """
    Visit all nodes in AST tree in a deterministic, dataclass-safe way.
    """
    if _seen is None:
        _seen = set()

    node_id = id(node)
    if node_id in _seen:
        return
    _seen.add(node_id)

    visitor_func(node)

    if not is_dataclass(node):
        return

    for f in fields(node):
        if f.name == "location":
            continue
        attr = getattr(node, f.name)

        if isinstance(attr, ASTNode):
            visit_ast(attr, visitor_func, _seen)
        elif isinstance(attr, list):
            for item in attr:
                if isinstance(item, ASTNode):
                    visit_ast(item, visitor_func, _seen)


def called_names(node: ASTNode) -> List[str]:
    """Names of every Apply/Call reachable from `node`, in visiting order."""
    out: List[str] = []

    def _collect(n):
        if isinstance(n, (Apply, Call)):
            out.append(n.name)

    visit_ast(node, _collect)
    return out


"""
Example models, built directly as ASTs (the compiler's input contract).
"""

from __future__ import annotations

from typing import List

from warren_core.language.ast import (
    AllowAttackDecl, AllowDecl, Apply, AttackDecl, Bind, Branch, Call, ChannelDecl, Comparison, ConstantDecl,
    Emit, EquationDecl, FileDecl, FunctionDecl, GuardedCommand, Ident, InstanceDecl, LemmaDecl, LemmaKind, Model,
    New, Param, ProcessDecl, Return, Seq, Skip, StoreOp, StoreOpKind, StrLit, SyscallDecl, SystemDecl, TupleExpr,
    TypeDeclaration, TypeKind,
)


def v(name: str) -> Ident:
    return Ident(name)


def f(name: str, *args) -> Apply:
    return Apply(name, list(args))


def s(value: str) -> StrLit:
    return StrLit(value)


def seq(*commands) -> Seq:
    return Seq(list(commands))


def let(var: str, expr) -> Bind:
    return Bind(var, expr)


def emit(tag: str, *args) -> Emit:
    return Emit(f(tag, *args))


def call(name: str, *args) -> Call:
    return Call(name, list(args))


def when(conditions: List[Comparison], command) -> GuardedCommand:
    return GuardedCommand(conditions, command)


def eq(left, right) -> Comparison:
    return Comparison(left, right)


def neq(left, right) -> Comparison:
    return Comparison(left, right, negated=True)


def corresponds(name: str, premise: Apply, conclusion: Apply) -> LemmaDecl:
    return LemmaDecl(name, LemmaKind.CORRESPONDS, premise=premise, conclusion=conclusion)


def reachable(name: str, *events: Apply) -> LemmaDecl:
    return LemmaDecl(name, LemmaKind.REACHABLE, events=list(events))


def symenc_theory():
    return (
        [FunctionDecl("senc", 2), FunctionDecl("sdec", 2)],
        [EquationDecl(f("sdec", f("senc", v("x"), v("y")), v("y")), v("x"))],
    )


# ============================================================================
# Symmetric encryption: Alice sends senc(m, k) to Bob, who decrypts it
# ============================================================================

def symmetric_encryption_model() -> Model:
    functions, equations = symenc_theory()
    alice = ProcessDecl(
        "Alice", "agent_t", [Param("c", "net_t")],
        main=seq(
            New("m"),
            emit("Sent", v("m")),
            call("send", v("c"), f("senc", v("m"), v("k"))),
        ),
    )
    bob = ProcessDecl(
        "Bob", "agent_t", [Param("c", "net_t")],
        main=seq(
            let("x", f("recv", v("c"))),
            let("y", f("sdec", v("x"), v("k"))),
            emit("Received", v("y")),
        ),
    )
    return Model(
        functions=functions,
        equations=equations,
        types=[TypeDeclaration("agent_t", TypeKind.PROCESS), TypeDeclaration("net_t", TypeKind.CHANNEL)],
        grants=[AllowDecl("agent_t", "net_t", ["send", "recv"])],
        constants=[ConstantDecl("k", fresh=True)],
        channels=[ChannelDecl("net", "net_t")],
        processes=[alice, bob],
        system=SystemDecl(
            instances=[InstanceDecl("Alice", ["net"], name="alice"), InstanceDecl("Bob", ["net"], name="bob")],
            lemmas=[
                reachable("delivered", f("Sent", v("m")), f("Received", v("m"))),
                corresponds("authentic", f("Received", v("m")), f("Sent", v("m"))),
            ],
        ),
    )


# ============================================================================
# Signatures: Alice signs m, Bob accepts only if the signature verifies
# ============================================================================

def signature_model() -> Model:
    alice = ProcessDecl(
        "Alice", "agent_t", [Param("c", "net_t")],
        main=seq(
            New("m"),
            emit("Signed", v("m")),
            call("send", v("c"), TupleExpr([v("m"), f("sign", v("m"), v("skA"))])),
        ),
    )
    bob = ProcessDecl(
        "Bob", "agent_t", [Param("c", "net_t")],
        main=seq(
            let("p", f("recv", v("c"))),
            let("m", f("fst", v("p"))),
            let("sig", f("snd", v("p"))),
            Branch([
                when([eq(f("verify", v("sig"), v("m"), f("pk", v("skA"))), f("true"))], emit("Accepted", v("m"))),
                when([], Skip()),
            ]),
        ),
    )
    return Model(
        functions=[FunctionDecl("sign", 2), FunctionDecl("verify", 3), FunctionDecl("pk", 1), FunctionDecl("true", 0)],
        equations=[EquationDecl(f("verify", f("sign", v("m"), v("sk")), v("m"), f("pk", v("sk"))), f("true"))],
        types=[TypeDeclaration("agent_t", TypeKind.PROCESS), TypeDeclaration("net_t", TypeKind.CHANNEL)],
        grants=[AllowDecl("agent_t", "net_t", ["send", "recv"])],
        constants=[ConstantDecl("skA", fresh=True)],
        channels=[ChannelDecl("net", "net_t")],
        processes=[alice, bob],
        system=SystemDecl(
            instances=[InstanceDecl("Alice", ["net"], name="alice"), InstanceDecl("Bob", ["net"], name="bob")],
            lemmas=[corresponds("signed_before_accepted", f("Accepted", v("m")), f("Signed", v("m")))],
        ),
    )


# ============================================================================
# Channel injection: the network may hand the receiver attacker facts
# ============================================================================

def injection_model() -> Model:
    inject = AttackDecl(
        "inject", ["c"],
        seq(StoreOp(StoreOpKind.CONSUME, "attacker", v("x")), Return(v("x"))),
        target="recv",
    )
    leak = AttackDecl("leak", ["v"], StoreOp(StoreOpKind.INSERT, "attacker", v("v")))
    sender = ProcessDecl(
        "Sender", "client_t", [Param("c", "net_t")],
        main=seq(
            emit("Sent", s("hello")),
            call("send", v("c"), s("hello")),
            call("leak", s("evil")),
        ),
    )
    receiver = ProcessDecl(
        "Receiver", "client_t", [Param("c", "net_t")],
        main=seq(
            let("x", f("recv", v("c"))),
            emit("Got", v("x")),
        ),
    )
    return Model(
        types=[TypeDeclaration("client_t", TypeKind.PROCESS), TypeDeclaration("net_t", TypeKind.CHANNEL)],
        grants=[AllowDecl("client_t", "net_t", ["send", "recv"])],
        attacker_grants=[AllowAttackDecl("net_t", ["inject"]), AllowAttackDecl("client_t", ["leak"])],
        attacks=[inject, leak],
        channels=[ChannelDecl("net", "net_t")],
        processes=[sender, receiver],
        system=SystemDecl(
            instances=[InstanceDecl("Sender", ["net"], name="sender"), InstanceDecl("Receiver", ["net"], name="receiver")],
            lemmas=[corresponds("got_what_was_sent", f("Got", v("x")), f("Sent", v("x")))],
        ),
    )


# ============================================================================
# Small single-process model, for elaborator tests
# ============================================================================

def single_process_model(main, *, functions=None, equations=None, grants=None, files=None, constants=None,
                         syscalls=None, attacks=None, attacker_grants=None, lemmas=None, vars=None) -> Model:
    process = ProcessDecl("P", "proc_t", [Param("c", "net_t")], vars=list(vars or []), main=main)
    return Model(
        functions=list(functions or []),
        equations=list(equations or []),
        types=[
            TypeDeclaration("proc_t", TypeKind.PROCESS),
            TypeDeclaration("net_t", TypeKind.CHANNEL),
            TypeDeclaration("disk_t", TypeKind.FILESYS),
        ],
        grants=list(grants if grants is not None else [AllowDecl("proc_t", "net_t", ["send", "recv"])]),
        attacker_grants=list(attacker_grants or []),
        syscalls=list(syscalls or []),
        attacks=list(attacks or []),
        constants=list(constants or []),
        channels=[ChannelDecl("net", "net_t")],
        files=list(files or []),
        processes=[process],
        system=SystemDecl(
            instances=[InstanceDecl("P", ["net"], name="p")],
            lemmas=list(lemmas or [reachable("done", f("Done"))]),
        ),
    )


def file_decl(name: str, content) -> FileDecl:
    return FileDecl(name, "disk_t", content)


# ============================================================================
# Nonce exchange: the client sends senc(<m, n>, k) with a nonce it also writes
# to a shared file; the server accepts m only if the nonce inside matches
# ============================================================================

def nonce_exchange_model() -> Model:
    functions, equations = symenc_theory()
    get_nonce = SyscallDecl(
        "get_nonce", ["f"],
        seq(New("n"), call("write", v("f"), v("n")), Return(v("n"))),
    )
    inject = AttackDecl(
        "inject_channel", ["c"],
        seq(StoreOp(StoreOpKind.CONSUME, "attacker", v("x")), Return(v("x"))),
        target="recv",
    )
    plant = AttackDecl("plant", ["v"], StoreOp(StoreOpKind.INSERT, "attacker", v("v")))
    client = ProcessDecl(
        "Client", "client_ty", [Param("c", "net_t"), Param("f", "nonce_t")],
        main=seq(
            New("m"),
            let("n", f("get_nonce", v("f"))),
            emit("Sent", v("m")),
            call("send", v("c"), f("senc", TupleExpr([v("m"), v("n")]), v("k"))),
        ),
    )
    opened = f("sdec", v("r"), v("k"))
    server = ProcessDecl(
        "Server", "client_ty", [Param("c", "net_t"), Param("f", "nonce_t")],
        main=seq(
            let("r", f("recv", v("c"))),
            emit("Got", v("r")),
            let("n", f("read", v("f"))),
            Branch([when([eq(f("snd", opened), v("n"))], emit("Valid", f("fst", opened)))]),
        ),
    )
    # a ciphertext under a key the server does not use
    mallory = ProcessDecl(
        "Mallory", "adv_ty", [],
        main=call("plant", f("senc", TupleExpr([s("evil"), s("guess")]), v("kE"))),
    )
    return Model(
        functions=functions,
        equations=equations,
        types=[
            TypeDeclaration("client_ty", TypeKind.PROCESS),
            TypeDeclaration("adv_ty", TypeKind.PROCESS),
            TypeDeclaration("net_t", TypeKind.CHANNEL),
            TypeDeclaration("nonce_t", TypeKind.FILESYS),
        ],
        grants=[
            AllowDecl("client_ty", "net_t", ["send", "recv"]),
            AllowDecl("client_ty", "nonce_t", ["get_nonce", "read"]),
        ],
        attacker_grants=[AllowAttackDecl("client_ty", ["inject_channel"]), AllowAttackDecl("adv_ty", ["plant"])],
        syscalls=[get_nonce],
        attacks=[inject, plant],
        constants=[ConstantDecl("k", fresh=True), ConstantDecl("kE")],
        channels=[ChannelDecl("net", "net_t")],
        files=[FileDecl("db", "nonce_t", s("none"))],
        processes=[client, server, mallory],
        system=SystemDecl(
            instances=[
                InstanceDecl("Client", ["net", "db"], name="cl"),
                InstanceDecl("Server", ["net", "db"], name="sv"),
                InstanceDecl("Mallory", [], name="mal"),
            ],
            lemmas=[corresponds("valid_after_sent", f("Valid", v("m")), f("Sent", v("m")))],
        ),
    )

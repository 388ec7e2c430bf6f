"""
Warren: Channel Injection Demo
==============================

Goal: Show an active attack on `recv` turning an authentic-looking protocol
into one whose correspondence lemma fails on some trace.

Flow: build the model -> compile -> explore every trace -> check lemmas ->
render the first counterexample.
"""

import sys
from pathlib import Path

# examples/ -> root
project_root = Path(__file__).resolve().parent.parent
sys.path.append(str(project_root))

from rich.console import Console
from rich.panel import Panel

from warren_core.audit.visualizer import TraceVisualizer
from warren_core.factory import check_lemmas, create_simulator
from warren_core.language.ast import (
    AllowAttackDecl, AllowDecl, Apply, AttackDecl, Bind, Call, ChannelDecl, Emit, Ident, InstanceDecl, LemmaDecl,
    LemmaKind, Model, Param, ProcessDecl, Return, Seq, StoreOp, StoreOpKind, StrLit, SystemDecl, TypeDeclaration,
    TypeKind,
)

console = Console()

# ==============================================================================
# 1. THE MODEL
# ==============================================================================

def build_model() -> Model:
    inject = AttackDecl(
        "inject", ["c"],
        Seq([StoreOp(StoreOpKind.CONSUME, "attacker", Ident("x")), Return(Ident("x"))]),
        target="recv",
    )
    leak = AttackDecl("leak", ["v"], StoreOp(StoreOpKind.INSERT, "attacker", Ident("v")))

    sender = ProcessDecl("Sender", "client_t", [Param("c", "net_t")], main=Seq([
        Emit(Apply("Sent", [StrLit("hello")])),
        Call("send", [Ident("c"), StrLit("hello")]),
        Call("leak", [StrLit("evil")]),
    ]))
    receiver = ProcessDecl("Receiver", "client_t", [Param("c", "net_t")], main=Seq([
        Bind("x", Apply("recv", [Ident("c")])),
        Emit(Apply("Got", [Ident("x")])),
    ]))

    return Model(
        types=[TypeDeclaration("client_t", TypeKind.PROCESS), TypeDeclaration("net_t", TypeKind.CHANNEL)],
        grants=[AllowDecl("client_t", "net_t", ["send", "recv"])],
        attacker_grants=[AllowAttackDecl("net_t", ["inject"]), AllowAttackDecl("client_t", ["leak"])],
        attacks=[inject, leak],
        channels=[ChannelDecl("net", "net_t")],
        processes=[sender, receiver],
        system=SystemDecl(
            instances=[InstanceDecl("Sender", ["net"], name="sender"),
                       InstanceDecl("Receiver", ["net"], name="receiver")],
            lemmas=[LemmaDecl("got_what_was_sent", LemmaKind.CORRESPONDS,
                              premise=Apply("Got", [Ident("x")]), conclusion=Apply("Sent", [Ident("x")]))],
        ),
    )


# ==============================================================================
# 2. RUN
# ==============================================================================

def main():
    console.print(Panel("[bold white]Warren: Channel Injection Demo[/bold white]", style="bold blue", width=92))

    simulator = create_simulator(build_model())
    traces = simulator.traces()
    console.print(f"\n🔎 Explored [bold]{len(traces)}[/bold] distinct trace(s)")

    visualizer = TraceVisualizer(console=console)
    for trace in traces:
        results = check_lemmas(simulator.system, trace)
        if any(r.holds is False for r in results.values()):
            visualizer.visualize(trace, results, title="Counterexample")
            return 1

    console.print("[green]✅ Every lemma holds on every explored trace.[/green]")
    return 0


if __name__ == "__main__":
    sys.exit(main())

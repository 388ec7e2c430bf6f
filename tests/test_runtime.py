from __future__ import annotations

import pytest

from warren_core.factory import check_lemmas, create_simulator, load_simulator
from warren_core.language.ast import Branch, New, Repeat
from warren_core.language.ir import CallSite
from warren_core.language.store import ATTACKER_STORE
from warren_core.language.terms import App, Const, Lit, Name
from warren_core.runtime import Simulator, SimulatorConfig
from tests.conftest import QUIET, compile_model
from tests.models import (
    call, emit, eq, f, injection_model, let, reachable, s, seq, single_process_model,
    symmetric_encryption_model, v, when,
)


def test_symmetric_run(compiled_symmetric, simulate):
    traces = simulate(compiled_symmetric)
    assert len(traces) == 1
    trace = traces[0]
    m = Name("n1.0")
    assert trace.terms == [App("Sent", (m,)), App("Received", (m,))]
    assert [e.instance for e in trace.events] == ["alice", "bob"]
    assert sorted(trace.finished) == ["alice", "bob"]
    assert trace.complete
    assert trace.stores["net"] == []

    results = check_lemmas(compiled_symmetric, trace)
    assert {name: r.holds for name, r in results.items()} == {"delivered": True, "authentic": True}


def test_signature_run(compiled_signature, simulate):
    traces = simulate(compiled_signature)
    assert [t.terms for t in traces] == [[App("Signed", (Name("n1.0"),)), App("Accepted", (Name("n1.0"),))]]
    assert check_lemmas(compiled_signature, traces[0])["signed_before_accepted"].holds


def test_injection_finds_the_forged_message(compiled_injection, simulate):
    traces = simulate(compiled_injection)
    by_got = {t.terms[-1]: t for t in traces}
    assert set(by_got) == {App("Got", (Lit("hello"),)), App("Got", (Lit("evil"),))}

    honest = by_got[App("Got", (Lit("hello"),))]
    forged = by_got[App("Got", (Lit("evil"),))]
    assert check_lemmas(compiled_injection, honest)["got_what_was_sent"].holds is True
    assert check_lemmas(compiled_injection, forged)["got_what_was_sent"].holds is False

    # the attacker keeps what it hands out; the honest message is still on the wire
    assert forged.stores[ATTACKER_STORE] == [Lit("evil")]
    assert forged.stores["net"] == [Lit("hello")]


def test_attacker_may_forget(compiled_injection, simulate):
    traces = simulate(compiled_injection, keep_attacker_facts=False)
    forged = [t for t in traces if t.terms[-1] == App("Got", (Lit("evil"),))][0]
    assert forged.stores[ATTACKER_STORE] == []


def test_find(compiled_injection):
    sim = Simulator(compiled_injection)
    trace = sim.find(lambda t: App("Got", (Lit("evil"),)) in t.terms)
    assert trace is not None
    assert sim.find(lambda t: App("Got", (Lit("nobody"),)) in t.terms) is None


def test_unmatched_receive_blocks(simulate):
    model = single_process_model(seq(let("x", f("recv", v("c"))), emit("Done")))
    traces = simulate(compile_model(model))
    assert len(traces) == 1
    assert traces[0].events == []
    assert traces[0].blocked == ["p"]
    assert not traces[0].complete


def test_no_holding_guard_is_a_dead_end(simulate):
    model = single_process_model(seq(
        let("x", s("a")),
        Branch([when([eq(v("x"), s("b"))], emit("Done"))]),
    ))
    trace = simulate(compile_model(model))[0]
    assert trace.events == []
    assert trace.blocked == ["p"] and trace.finished == []


def loop_model(*, ticks=False):
    body = seq(New("n"), emit("Tick", v("n")), let("y", f("recv", v("c")))) if ticks \
        else let("y", f("recv", v("c")))
    lemmas = [reachable("ticked", f("Tick", v("t")))] if ticks else None
    return single_process_model(
        seq(
            call("send", v("c"), s("a")),
            call("send", v("c"), s("stop")),
            Repeat(body, [when([eq(v("y"), s("stop"))], emit("Done"))]),
        ),
        lemmas=lemmas,
    )


def test_every_consumable_fact_is_a_branch(simulate):
    system = compile_model(loop_model())
    assert len(simulate(system)) == 1
    traces = simulate(system, dedupe=False)
    assert len(traces) == 2
    assert all(t.terms == [App("Done", ())] for t in traces)
    assert sorted(t.stores["net"] for t in traces) == [[], [Lit("a")]]


def test_new_inside_a_loop_yields_distinct_names(simulate):
    traces = simulate(compile_model(loop_model(ticks=True)))
    longest = max(traces, key=lambda t: len(t.events))
    ticks = [t for t in longest.terms if t.symbol == "Tick"]
    assert ticks == [App("Tick", (Name("n0.0"),)), App("Tick", (Name("n0.1"),))]


def test_step_bound_truncates(simulate):
    model = single_process_model(seq(
        Repeat(
            seq(call("send", v("c"), s("x")), let("y", f("recv", v("c")))),
            [when([eq(v("y"), s("never"))], emit("Done"))],
        ),
    ))
    traces = simulate(compile_model(model), max_steps=30)
    assert len(traces) == 1
    assert traces[0].truncated and traces[0].steps == 30
    assert not traces[0].complete


def test_trace_limit(compiled_injection, simulate):
    assert len(simulate(compiled_injection, max_traces=1)) == 1


# ============================================================================
# Factory
# ============================================================================

def test_create_simulator():
    sim = create_simulator(symmetric_encryption_model(), compiler_config=QUIET)
    assert len(sim.traces()) == 1


def test_load_simulator_from_saved_ir(compiled_injection, tmp_path):
    path = tmp_path / "injection.ir"
    compiled_injection.save(str(path))
    sim = load_simulator(path, SimulatorConfig(max_traces=10))
    assert {t.terms[-1] for t in sim.traces()} == {App("Got", (Lit("hello"),)), App("Got", (Lit("evil"),))}


def test_load_simulator_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_simulator(tmp_path / "missing.ir")


def test_compilation_is_deterministic():
    first = compile_model(injection_model())
    second = compile_model(injection_model())
    assert first.to_dict() == second.to_dict()


# ============================================================================
# Visualizer
# ============================================================================

def test_visualizer_flags_a_violated_lemma(compiled_injection):
    import io
    from rich.console import Console
    from warren_core.audit.visualizer import TraceVisualizer

    sim = Simulator(compiled_injection)
    forged = sim.find(lambda t: App("Got", (Lit("evil"),)) in t.terms)
    buffer = io.StringIO()
    TraceVisualizer(console=Console(file=buffer, width=100)).visualize(forged, check_lemmas(compiled_injection, forged))
    text = buffer.getvalue()
    assert "LEMMA VIOLATED" in text
    assert "got_what_was_sent" in text and "fails" in text
    assert 'Got("evil")' in text
    assert "attacker" in text


# ============================================================================
# Nonce exchange under channel injection
# ============================================================================

def test_server_recv_site_has_exactly_two_continuations(compiled_nonce_exchange):
    server = compiled_nonce_exchange.instance("sv").graph
    sites = server.of_type(CallSite)
    assert [(site.callee, [server[i].tag for i in site.successors]) for site in sites] == [
        ("recv", ["normal", "attack:inject_channel"]),
    ]
    assert compiled_nonce_exchange.instance("cl").graph.of_type(CallSite) == []


def test_only_the_client_ciphertext_is_accepted(compiled_nonce_exchange, simulate):
    traces = simulate(compiled_nonce_exchange)
    valid = [t for t in traces if any(term.symbol == "Valid" for term in t.terms)]
    assert len(valid) == 1
    trace = valid[0]
    sent, got, accepted = trace.terms
    assert [e.instance for e in trace.events] == ["cl", "sv", "sv"]
    assert sent.symbol == "Sent" and accepted == App("Valid", sent.args)
    assert got.symbol == "Got" and got.args[0].symbol == "senc"
    assert sorted(trace.finished) == ["cl", "mal", "sv"]

    for t in traces:
        assert check_lemmas(compiled_nonce_exchange, t)["valid_after_sent"].holds


def test_injected_ciphertext_dead_ends_at_the_guard(compiled_nonce_exchange, simulate):
    forged = App("senc", (App("pair", (Lit("evil"), Lit("guess"))), Const("kE")))
    injected = [t for t in simulate(compiled_nonce_exchange) if App("Got", (forged,)) in t.terms]
    assert injected
    for t in injected:
        assert all(term.symbol != "Valid" for term in t.terms)
        assert t.blocked == ["sv"]
        # the honest ciphertext is still on the wire
        assert len(t.stores["net"]) == 1

from __future__ import annotations

import pytest

from warren_core.language.ast import (
    AllowAttackDecl, AllowDecl, AttackDecl, ConstantDecl, InstanceDecl, New, Return, StoreOp, StoreOpKind,
    SyscallDecl,
)
from warren_core.language.errors import CompilationError
from warren_core.language.ir import (
    ATTACKER, Alternative, Assign, CallSite, Consume, Emit, Insert, Join,
)
from warren_core.language.store import ATTACKER_STORE
from warren_core.language.terms import Lit, Var
from tests.conftest import compile_model
from tests.models import call, emit, injection_model, s, seq, single_process_model, v


def test_recv_site_gets_normal_and_attack_alternatives(compiled_injection):
    receiver = compiled_injection.instance("receiver").graph
    sites = receiver.of_type(CallSite)
    assert len(sites) == 1 and sites[0].callee == "recv"
    tags = [receiver[i].tag for i in sites[0].successors]
    assert tags == ["normal", "attack:inject"]

    joins = receiver.of_type(Join)
    assert len(joins) == 1
    assert isinstance(receiver[joins[0].successors[0]], Emit)


def test_attack_alternative_draws_from_the_attacker_store(compiled_injection):
    receiver = compiled_injection.instance("receiver").graph
    consumes = {n.store: n for n in receiver.of_type(Consume)}
    assert set(consumes) == {"net", ATTACKER_STORE}
    attack = consumes[ATTACKER_STORE]
    assert attack.binds == ("x.1",)
    assigns = [(n.var, n.term) for n in receiver.of_type(Assign)]
    assert ("x.0", Var("x.1")) in assigns
    assert ("x.0", Var("received$.0")) in assigns


def test_send_is_not_intercepted(compiled_injection):
    sender = compiled_injection.instance("sender").graph
    assert sender.of_type(CallSite) == []
    assert sender.of_type(Alternative) == []
    inserts = [(n.store, n.term) for n in sender.of_type(Insert)]
    assert inserts == [("net", Var("m.0")), (ATTACKER_STORE, Var("v.0"))]


def test_causal_edges_include_the_attacker(compiled_injection):
    receiver = compiled_injection.instance("receiver").graph
    attack_consume = [n for n in receiver.of_type(Consume) if n.store == ATTACKER_STORE][0]
    producers = {e.producer for e in compiled_injection.causal_edges
                 if e.consumer == ("receiver", attack_consume.index)}
    sender_leak = [n for n in compiled_injection.instance("sender").graph.of_type(Insert)
                   if n.store == ATTACKER_STORE][0]
    assert producers == {(ATTACKER, -1), ("sender", sender_leak.index)}


def test_attack_needs_an_attacker_grant():
    model = injection_model()
    model.attacker_grants = [AllowAttackDecl("client_t", ["leak"])]
    system = compile_model(model)
    assert system.instance("receiver").graph.of_type(CallSite) == []


def test_grant_on_the_process_type_also_applies():
    model = injection_model()
    model.attacker_grants = [AllowAttackDecl("client_t", ["inject", "leak"])]
    receiver = compile_model(model).instance("receiver").graph
    assert len(receiver.of_type(CallSite)) == 1


def test_passive_attack_needs_a_grant():
    model = injection_model()
    model.attacker_grants = [AllowAttackDecl("net_t", ["inject"])]
    with pytest.raises(CompilationError) as exc:
        compile_model(model)
    assert exc.value.kinds == ["AccessViolation"]
    assert exc.value.errors[0].declaration == "sender"


def test_passive_attack_may_only_insert_into_the_attacker_store():
    leak = AttackDecl("leak", ["c", "v"], StoreOp(StoreOpKind.INSERT, "c", v("v")))
    model = single_process_model(
        seq(call("leak", v("c"), s("x")), emit("Done")),
        attacks=[leak],
        attacker_grants=[AllowAttackDecl("proc_t", ["leak"])],
    )
    with pytest.raises(CompilationError) as exc:
        compile_model(model)
    assert exc.value.kinds == ["AccessViolation"]
    assert exc.value.errors[0].declaration == "leak"


def test_passive_attack_may_not_call_syscalls():
    leak = AttackDecl("leak", ["c", "v"], call("send", v("c"), v("v")))
    model = single_process_model(
        seq(call("leak", v("c"), s("x")), emit("Done")),
        attacks=[leak],
        attacker_grants=[AllowAttackDecl("proc_t", ["leak"])],
    )
    with pytest.raises(CompilationError) as exc:
        compile_model(model)
    assert "AccessViolation" in exc.value.kinds


def test_active_attack_cannot_be_called_directly():
    inject = AttackDecl("inject", ["c"], Return(s("evil")), target="recv")
    model = single_process_model(
        seq(call("inject", v("c")), emit("Done")),
        attacks=[inject],
        attacker_grants=[AllowAttackDecl("net_t", ["inject"])],
    )
    with pytest.raises(CompilationError) as exc:
        compile_model(model)
    assert exc.value.kinds == ["AccessViolation"]


def test_attacker_grant_must_name_an_attack():
    model = single_process_model(seq(emit("Done")), attacker_grants=[AllowAttackDecl("net_t", ["send"])])
    with pytest.raises(CompilationError) as exc:
        compile_model(model)
    assert exc.value.kinds == ["UnknownSymbol"]


def test_attack_bodies_are_not_intercepted_again():
    # `hijack` replaces `relay` and calls `send`, which `tamper` attacks
    relay = SyscallDecl("relay", ["c", "m"], call("send", v("c"), v("m")))
    hijack = AttackDecl("hijack", ["c", "m"], call("send", v("c"), s("forged")), target="relay")
    tamper = AttackDecl("tamper", ["c", "m"], StoreOp(StoreOpKind.INSERT, "c", s("tampered")), target="send")
    model = single_process_model(
        seq(call("relay", v("c"), s("hello")), emit("Done")),
        syscalls=[relay],
        attacks=[hijack, tamper],
        grants=[AllowDecl("proc_t", "net_t", ["relay"])],
        attacker_grants=[AllowAttackDecl("net_t", ["hijack", "tamper"])],
    )
    graph = compile_model(model).instance("p").graph
    sites = graph.of_type(CallSite)
    assert [site.callee for site in sites] == ["relay", "send"]
    # `send` under the normal `relay` alternative is intercepted, under `hijack` it is not
    send_site = sites[1]
    assert [graph[i].tag for i in send_site.successors] == ["normal", "attack:tamper"]
    assert send_site.position.startswith("p/main.0.normal")
    inserted = [n.term for n in graph.of_type(Insert)]
    assert inserted.count(Lit("tampered")) == 1
    assert len(inserted) == 3


def test_every_new_site_has_its_own_nonce():
    mint = SyscallDecl("mint", ["c"], seq(New("n"), call("send", v("c"), v("n"))))
    evil_mint = AttackDecl("evil_mint", ["c"], seq(New("n"), call("send", v("c"), v("n"))), target="mint")
    model = single_process_model(
        seq(New("a"), call("mint", v("c")), call("mint", v("c")), emit("Done")),
        syscalls=[mint],
        attacks=[evil_mint],
        grants=[AllowDecl("proc_t", "net_t", ["send", "recv", "mint"])],
        attacker_grants=[AllowAttackDecl("proc_t", ["evil_mint"])],
        constants=[ConstantDecl("k", fresh=True)],
    )
    model.system.instances.append(InstanceDecl("P", ["net"], name="q"))
    system = compile_model(model)
    ids = system.nonce_ids()
    # k, then per instance: a, and two call sites with two alternatives each
    assert len(ids) == 1 + 2 * (1 + 2 * 2)
    assert len(ids) == len(set(ids))

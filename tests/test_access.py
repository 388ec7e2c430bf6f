from __future__ import annotations

import itertools

import pytest

from warren_core.language.access import AccessPolicy
from warren_core.language.ast import TypeKind
from warren_core.language.errors import AccessViolation, DuplicateType, UnknownType


PROCESS_TYPES = ["client_t", "server_t"]
OBJECT_TYPES = [None, "net_t", "disk_t"]
OPS = ["send", "recv", "read", "write", "insert"]

GRANTS = {
    ("client_t", "net_t"): {"send", "recv"},
    ("server_t", "net_t"): {"recv"},
    ("server_t", "disk_t"): {"read", "write"},
    ("client_t", None): {"insert"},
}


@pytest.fixture
def policy() -> AccessPolicy:
    p = AccessPolicy()
    p.declare_type("client_t", TypeKind.PROCESS)
    p.declare_type("server_t", TypeKind.PROCESS)
    p.declare_type("net_t", TypeKind.CHANNEL)
    p.declare_type("disk_t", TypeKind.FILESYS)
    for (subject, obj), ops in GRANTS.items():
        p.declare_grant(subject, obj, sorted(ops))
    p.declare_attacker_grant("net_t", ["inject"])
    return p


def test_access_table_is_exactly_the_grants(policy):
    for subject, obj, op in itertools.product(PROCESS_TYPES, OBJECT_TYPES, OPS):
        expected = op in GRANTS.get((subject, obj), set())
        assert policy.check_invocation(subject, obj, op) is expected, (subject, obj, op)


def test_grants_accumulate(policy):
    policy.declare_grant("server_t", "net_t", ["send"])
    assert policy.check_invocation("server_t", "net_t", "send")
    assert policy.check_invocation("server_t", "net_t", "recv")


def test_require_raises_access_violation(policy):
    policy.require("client_t", "net_t", "send")
    with pytest.raises(AccessViolation) as exc:
        policy.require("server_t", "net_t", "send", position="server#0/main.1")
    assert exc.value.position == "server#0/main.1"
    assert "server_t" in exc.value.message


def test_attacker_grants(policy):
    assert policy.check_attack("net_t", "inject")
    assert not policy.check_attack("client_t", "inject")
    policy.require_attack(["client_t", "net_t"], "inject")
    with pytest.raises(AccessViolation):
        policy.require_attack(["client_t"], "inject")


def test_declaration_errors(policy):
    with pytest.raises(DuplicateType):
        policy.declare_type("net_t", TypeKind.CHANNEL)
    with pytest.raises(UnknownType):
        policy.declare_grant("ghost_t", "net_t", ["send"])
    with pytest.raises(UnknownType):
        policy.declare_grant("client_t", "ghost_t", ["send"])
    with pytest.raises(UnknownType):
        policy.declare_attacker_grant("ghost_t", ["inject"])
    assert policy.kind_of("disk_t") is TypeKind.FILESYS
    assert policy.kind_of("ghost_t") is None

from __future__ import annotations

import pytest

from warren_core.language.compiler import CompilerConfig, WarrenCompiler
from warren_core.runtime import Simulator, SimulatorConfig

from tests.models import injection_model, nonce_exchange_model, signature_model, symmetric_encryption_model


QUIET = CompilerConfig(verbose=False, report_errors=False)


def compile_model(model, config: CompilerConfig = QUIET):
    return WarrenCompiler(config).compile(model)


@pytest.fixture
def compiler() -> WarrenCompiler:
    return WarrenCompiler(QUIET)


@pytest.fixture(scope="session")
def compiled_symmetric():
    return compile_model(symmetric_encryption_model())


@pytest.fixture(scope="session")
def compiled_signature():
    return compile_model(signature_model())


@pytest.fixture(scope="session")
def compiled_injection():
    return compile_model(injection_model())


@pytest.fixture(scope="session")
def compiled_nonce_exchange():
    return compile_model(nonce_exchange_model())


@pytest.fixture
def simulate():
    def _simulate(system, **overrides):
        return Simulator(system, SimulatorConfig(**overrides)).traces()
    return _simulate

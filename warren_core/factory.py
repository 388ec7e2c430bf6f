"""
Warren Factory
==============
Builds Simulators and lemma checks from models or saved IR, so callers do not
have to wire the compiler, simulator and trace checker together by hand.
"""

import os
from pathlib import Path
from typing import Dict, Optional, Union

from .runtime import Simulator, SimulatorConfig, Trace
from .language.ast import Model
from .language.compiler import CompilerConfig, WarrenCompiler
from .language.ir import CompiledSystem
from .verification.trace_checker import LemmaCheck, TraceChecker


def load_simulator(
    ir_path: Union[str, Path],
    config: Optional[SimulatorConfig] = None
) -> Simulator:
    """
    Factory Method: Loads a saved CompiledSystem from disk and returns a Simulator.

    Raises:
        FileNotFoundError: If the IR file does not exist.
    """
    path_obj = Path(ir_path).expanduser().resolve()

    if not path_obj.exists():
        raise FileNotFoundError(
            f"❌ Compiled IR not found at: '{path_obj}'\n"
            f"   (Current working directory: '{os.getcwd()}')"
        )

    return Simulator(CompiledSystem.load(str(path_obj)), config)


def create_simulator(
    model: Model,
    config: Optional[SimulatorConfig] = None,
    compiler_config: Optional[CompilerConfig] = None
) -> Simulator:
    """
    Factory Method: Compiles a model and returns a Simulator over its IR.

    Raises:
        CompilationError: If the model does not compile.
    """
    compiled = WarrenCompiler(compiler_config).compile(model)
    return Simulator(compiled, config)


def check_lemmas(system: CompiledSystem, trace: Trace) -> Dict[str, LemmaCheck]:
    """Every lemma of `system` decided on one trace, keyed by lemma name."""
    checker = TraceChecker(system.theory)
    return {lemma.name: checker.check(lemma, trace) for lemma in system.lemmas}

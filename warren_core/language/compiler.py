"""
Warren Compiler - Model AST to IR

Compiles a Warren model into the backend-agnostic CompiledSystem.

Architecture:
1. Declarations: the validator registers the theory, types, grants, syscalls,
   attacks, constants, channels/files and templates (errors collected in batch).
2. Elaboration: each system instance becomes a transition graph; syscalls are
   inlined and active attacks composed at every call site.
3. Lemmas: every lemma is normalised to a closed trace formula over the
   emitted event vocabulary.
4. IR: causal edges are derived and everything is packaged into a
   pickle-safe CompiledSystem.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from .ast import Emit as EmitCmd, Model, visit_ast
from .elaborator import NonceAllocator, ProcessElaborator, fresh_constant_var
from .errors import CompileError, CompilationError
from .ir import CompiledLemma, CompiledSystem, GlobalFresh, Insert, ProcessInstance, Remove
from .lemmas import LemmaTranslator, derive_causal_edges, event_vocabulary
from .store import StoreSite
from .validator import Declarations, ModelValidator


@dataclass(frozen=True)
class CompilerConfig:
    rewrite_budget: int = 64  # rewrites allowed per equation and per subterm of a normalised term
    verbose: bool = True
    report_errors: bool = True
    check_fact_presence: bool = True
    check_lemma_orderings: bool = True


class WarrenCompiler:
    """
    The Orchestrator.
    Pipeline: Declarations -> Elaboration -> Static Store Checks -> Lemmas -> IR Generation.
    """

    def __init__(self, config: Optional[CompilerConfig] = None):
        self.config = config or CompilerConfig()
        self.validator = ModelValidator(rewrite_budget=self.config.rewrite_budget)
        # engines and verification import the language package themselves
        from warren_core.engines.reporting import DiagnosticReporter
        self.reporter = DiagnosticReporter()

    def _say(self, message: str, end: str = "\n"):
        if self.config.verbose:
            print(message, end=end)

    def compile(self, model: Model) -> CompiledSystem:
        """
        Main compilation pipeline.
        """
        self._say(f"⚙️  Compiling System: {len(model.processes)} template(s), "
                  f"{len(model.system.instances) if model.system else 0} instance(s)")

        # ---------------------------------------------------------
        # STAGE 1: Declarations (batch)
        # ---------------------------------------------------------
        self._say("   • Checking Declarations...", end=" ")
        try:
            decls = self.validator.validate(model)
        except CompilationError as e:
            self._fail(e.errors)
        self._say("✅ OK")

        errors: List[CompileError] = []
        notes: List[str] = []

        # ---------------------------------------------------------
        # STAGE 2: Elaboration (per instance)
        # ---------------------------------------------------------
        self._say("   • Elaborating Processes...", end=" ")
        nonces = NonceAllocator()
        globals_ = [
            GlobalFresh(c.name, fresh_constant_var(c.name), nonces.allocate())
            for c in decls.constants.values() if c.fresh
        ]
        instances: List[ProcessInstance] = []
        failed: List[str] = []
        for idx, inst in enumerate(decls.system.instances):
            name = inst.name or f"{inst.template}#{idx}"
            template = decls.processes[inst.template]
            channels = {p.name: arg for p, arg in zip(template.params, inst.args)}
            try:
                instances.append(ProcessElaborator(decls, nonces, notes).elaborate(template, name, channels))
            except CompileError as e:
                errors.append(e)
                failed.append(inst.template)
        self._say("✅ OK" if not errors else f"❌ {len(errors)} error(s)")

        # ---------------------------------------------------------
        # STAGE 3: Static store checks
        # ---------------------------------------------------------
        if self.config.check_fact_presence and not errors:
            self._say("   ├── Checking Store Removals...", end=" ")
            found = decls.stores.check_removals(*self._store_sites(instances))
            errors.extend(found)
            self._say("✅ OK" if not found else f"❌ {len(found)} error(s)")

        # ---------------------------------------------------------
        # STAGE 4: Lemmas
        # ---------------------------------------------------------
        self._say("   • Translating Lemmas...", end=" ")
        vocabulary = event_vocabulary(instances)
        for tag, arities in self._template_vocabulary(decls, failed).items():
            vocabulary.setdefault(tag, set()).update(arities)
        translator = LemmaTranslator(decls.theory, decls.constants, vocabulary)
        lemmas: List[CompiledLemma] = []
        lemma_errors = 0
        for lemma in decls.system.lemmas:
            try:
                lemmas.append(translator.translate(lemma))
            except CompileError as e:
                errors.append(e)
                lemma_errors += 1
        self._say("✅ OK" if not lemma_errors else f"❌ {lemma_errors} error(s)")

        if self.config.check_lemma_orderings and lemmas:
            self._say("   ├── Checking Lemma Orderings (Z3 Engine)...", end=" ")
            from warren_core.verification.trace_checker import TraceChecker
            checker = TraceChecker(decls.theory)
            unordered = [l.name for l in lemmas if not checker.ordering_satisfiable(l)]
            for name in unordered:
                notes.append(f"lemma {name}: its ordering constraints are unsatisfiable")
            self._say("✅ Consistent" if not unordered else f"⚠️  {len(unordered)} lemma(s) with cyclic ordering")

        if errors:
            self._fail(errors)

        # ---------------------------------------------------------
        # STAGE 5: IR Generation
        # ---------------------------------------------------------
        self._say("   • Generating IR...", end=" ")
        system = CompiledSystem(
            theory=decls.theory,
            instances=instances,
            lemmas=lemmas,
            stores=dict(decls.stores.decls),
            constants=sorted(c.name for c in decls.constants.values() if not c.fresh),
            globals=globals_,
            causal_edges=derive_causal_edges(instances, decls.stores, decls.theory),
            notes=notes,
        )
        self._say("✅ OK")
        for note in notes:
            self._say(f"   ℹ️  {note}")
        return system

    def _fail(self, errors: List[CompileError]):
        self._say("\n❌ [CRITICAL] COMPILATION FAILED!")
        if self.config.report_errors:
            self.reporter.report_errors(errors)
        raise CompilationError(errors)

    @staticmethod
    def _store_sites(instances: List[ProcessInstance]):
        inserts: List[StoreSite] = []
        removals: List[StoreSite] = []
        for inst in instances:
            for node in inst.graph:
                if isinstance(node, Insert):
                    inserts.append(StoreSite(inst.name, node.index, node.store, node.term))
                elif isinstance(node, Remove):
                    removals.append(StoreSite(inst.name, node.index, node.store, node.term))
        return inserts, removals

    @staticmethod
    def _template_vocabulary(decls: Declarations, templates: List[str]) -> Dict[str, Set[int]]:
        """Event tags a failed instance would have emitted, read off its source."""
        vocab: Dict[str, Set[int]] = {}
        if not templates:
            return vocab

        def _collect(node):
            if isinstance(node, EmitCmd):
                vocab.setdefault(node.event.name, set()).add(len(node.event.args))

        for name in templates:
            visit_ast(decls.processes[name], _collect)
        for d in decls.syscalls.definitions.values():
            visit_ast(d.body, _collect)
        return vocab

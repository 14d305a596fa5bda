"""
nullflow.analysis
=================

The CFG walker: analyses one procedure to a fixed point and reports.

Steps of :meth:`ProcedureAnalyzer.analyze`:

1. register the procedure's own contracts (rejected ones become
   ``InvalidContract`` diagnostics);
2. validate the CFG (a malformed graph becomes one ``AnalysisFailure``);
3. build the entry state;
4. run :class:`nullflow.dataflow_engine.IntraproceduralSolver` with the
   :class:`nullflow.transfer.StateTransformer` as block and edge transfer;
5. replay every reached block once on its converged in-state with
   reporting switched on, and hand each exit state to the
   :class:`nullflow.contracts.ContractValidator`.

If the iteration cap is hit, step 5 is skipped and the procedure gets a
single ``AnalysisTimeout`` diagnostic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from nullflow.checkers import Diagnostic, DiagnosticCollector, DiagnosticKind
from nullflow.config import AnalysisOptions
from nullflow.contracts import ContractRegistry, ContractValidator, Precondition
from nullflow.ctrlflow_graph import EdgeKind
from nullflow.dataflow_engine import IntraproceduralSolver, WorklistStrategy
from nullflow.errors import MalformedCFGError
from nullflow.ir import Procedure, Return
from nullflow.lattice import NullState, StateMap, StateMapLattice
from nullflow.transfer import StateTransformer

logger = logging.getLogger(__name__)


@dataclass
class ProcedureResult:
    """Outcome of analysing one procedure.

    ``final_states`` maps each block id to the state after its last
    statement (``None`` if the block is never reached or never completes);
    ``entry_states`` holds the converged in-states.
    """
    procedure_id: str
    final_states: Dict[int, Optional[StateMap]] = field(default_factory=dict)
    entry_states: Dict[int, Optional[StateMap]] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    iterations: int = 0
    converged: bool = True
    history: Dict[int, List[StateMap]] = field(default_factory=dict)

    def state_at(self, block_id: int, *, before: bool = False) -> Optional[StateMap]:
        states = self.entry_states if before else self.final_states
        return states.get(block_id)

    def kinds(self) -> List[str]:
        return [d.kind.label for d in self.diagnostics]


class ProcedureAnalyzer:
    """Single-procedure nullability analysis.

    Parameters
    ----------
    registry : ContractRegistry
        Known signatures; the analysed procedure is registered on demand.
    options : AnalysisOptions, optional
    strategy : WorklistStrategy
        Worklist order of the fixed-point loop.
    trace : bool
        Keep the sequence of in-states per block in ``ProcedureResult.history``.
    """

    def __init__(
        self,
        registry: Optional[ContractRegistry] = None,
        options: Optional[AnalysisOptions] = None,
        strategy: WorklistStrategy = WorklistStrategy.RPO,
        trace: bool = False,
    ) -> None:
        self.registry = registry if registry is not None else ContractRegistry()
        self.options = options or AnalysisOptions()
        self.strategy = strategy
        self.trace = trace

    def entry_state(
        self, procedure: Procedure, transformer: Optional[StateTransformer] = None
    ) -> StateMap:
        """Initial state: declared defaults, entry preconditions, constructor fields."""
        tf = transformer or StateTransformer(procedure, self.registry, self.options)
        sig = procedure.signature
        states: Dict[str, NullState] = {}
        for fld in sig.fields:
            if sig.is_constructor:
                states[fld.name] = NullState.NULL
            else:
                states[fld.name] = tf.default_state(fld.nullability)
        for prop in procedure.properties:
            states[prop.name] = tf.default_state(prop.nullability)
        required = {
            c.parameter for c in self.registry.resolve_contracts(sig)
            if isinstance(c, Precondition) and c.requires_on_entry
        }
        for param in sig.parameters:
            if param.name in required:
                states[param.name] = NullState.NON_NULL
            else:
                states[param.name] = tf.default_state(param.nullability)
        for loc in procedure.locals:
            states[loc.name] = tf.default_state(loc.nullability)
        return StateMap(states)

    def analyze(
        self,
        procedure: Procedure,
        initial_state: Optional[Mapping[str, NullState]] = None,
    ) -> ProcedureResult:
        """Analyse *procedure*; *initial_state* overrides entries of the entry state."""
        pid = procedure.id
        collector = DiagnosticCollector(pid, procedure.file)
        result = ProcedureResult(procedure_id=pid)

        if pid in self.registry and self.registry.signature(pid) is procedure.signature:
            errors = self.registry.errors(pid)
        else:
            errors = self.registry.register(procedure.signature)
        for err in errors:
            describe = getattr(err.contract, "describe", None)
            collector.emit(
                DiagnosticKind.INVALID_CONTRACT,
                describe() if callable(describe) else repr(err.contract),
                f"invalid contract ignored: {err.reason}",
                line=procedure.line,
            )

        try:
            procedure.cfg.validate()
        except MalformedCFGError as exc:
            logger.warning("%s", exc)
            collector.emit(
                DiagnosticKind.ANALYSIS_FAILURE, "",
                f"analysis failed: malformed CFG: {exc.reason}",
                line=procedure.line,
            )
            result.diagnostics = collector.diagnostics
            result.converged = False
            return result

        transformer = StateTransformer(procedure, self.registry, self.options, collector)
        entry = self.entry_state(procedure, transformer)
        if initial_state:
            entry = StateMap({**entry.to_dict(), **dict(initial_state)})

        solver = IntraproceduralSolver(
            procedure.cfg,
            StateMapLattice(transformer.path_default),
            transfer=transformer.transfer_block,
            strategy=self.strategy,
            edge_transfer=transformer.edge_transfer,
            initial_value=entry,
            max_iterations=self.options.max_fixed_point_iterations_per_procedure,
            trace=self.trace,
        )
        solved = solver.solve()
        cfg = procedure.cfg
        result.iterations = solved.iterations
        result.converged = solved.converged
        result.entry_states = {n.id: solved.facts_in.get(n) for n in cfg.blocks}
        result.final_states = {n.id: solved.facts_out.get(n) for n in cfg.blocks}
        result.history = {n.id: list(h) for n, h in solved.history.items()}
        logger.debug("%s: %d iterations", pid, solved.iterations)

        if not solved.converged:
            logger.warning("%s: no fixed point after %d iterations", pid, solved.iterations)
            collector.emit(
                DiagnosticKind.ANALYSIS_TIMEOUT, "",
                f"analysis stopped after {solved.iterations} fixed-point iterations "
                f"without converging",
                line=procedure.line,
            )
            result.diagnostics = collector.diagnostics
            return result

        validator = ContractValidator(
            procedure,
            self.registry.resolve_contracts(procedure.signature),
            transformer,
            collector,
        )
        for node in cfg.reverse_postorder():
            if node is cfg.exit:
                continue
            in_state = solved.facts_in.get(node)
            if in_state is None:
                continue
            out = transformer.transfer_block(node, in_state, report=True)
            if out is None:
                continue
            if any(e.kind is EdgeKind.RETURN for e in node.successors):
                term = node.terminator
                if isinstance(term, Return):
                    validator.check_exit(out, term, node.id, len(node.statements) - 1)
                else:
                    validator.check_exit(out, None, node.id, len(node.statements))

        result.diagnostics = collector.diagnostics
        return result


__all__ = ["ProcedureResult", "ProcedureAnalyzer"]

"""
nullflow.dataflow_engine
========================

A small lattice-based forward dataflow framework over :class:`nullflow.ctrlflow_graph.CFG`.

Theory
------
A dataflow analysis is defined by:

1.  A **lattice** ``(L, ⊑, ⊥, ⊔)`` of finite height.
2.  A **transfer function** ``f : Node × L → L`` applied to each basic block.
3.  An optional **edge transfer** ``g : Edge × L → L`` that refines the fact
    flowing along one edge (branch conditions).
4.  An **initial value** for the entry node.

The solver iterates until a **fixpoint** is reached: no block's outgoing
fact changes when its transfer function is re-applied.  Termination follows
from the finite height of the lattice and the monotonicity of ``f`` and
``g``.

Worklist strategies
-------------------
``RPO`` (reverse post-order, the default for forward problems) processes
predecessors before successors and converges in the fewest passes.  ``FIFO``
and ``LIFO`` are kept for comparison and testing; all strategies reach the
same fixpoint.

Public API
----------
    Lattice             - abstract base for lattice definitions
    WorklistStrategy    - iteration order enum
    DataflowResult      - container for analysis results
    IntraproceduralSolver - single-procedure fixpoint engine
"""

from __future__ import annotations

import abc
import enum
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Set,
    TypeVar,
)

logger = logging.getLogger(__name__)

L = TypeVar("L")          # Lattice value type


# ===========================================================================
# WORKLIST STRATEGY
# ===========================================================================

class WorklistStrategy(enum.Enum):
    """Strategy for selecting the next worklist node."""
    FIFO = "fifo"
    LIFO = "lifo"
    RPO = "rpo"         # Reverse post-order (best for forward)


# ===========================================================================
# LATTICE — ABSTRACT BASE
# ===========================================================================

class Lattice(abc.ABC, Generic[L]):
    """Abstract base class for a dataflow lattice.

    A lattice ``(L, ⊑, ⊥, ⊔)`` must provide:

    - ``bottom()``   → the least element ⊥.
    - ``join(a, b)`` → the least upper bound ``a ⊔ b``.
    - ``leq(a, b)``  → ``True`` iff ``a ⊑ b``.
    """

    @abc.abstractmethod
    def bottom(self) -> L:
        """Return the least element ⊥."""
        ...

    @abc.abstractmethod
    def join(self, a: L, b: L) -> L:
        """Return the least upper bound ``a ⊔ b``."""
        ...

    @abc.abstractmethod
    def leq(self, a: L, b: L) -> bool:
        """Return ``True`` iff ``a ⊑ b``."""
        ...

    def eq(self, a: L, b: L) -> bool:
        """Equality: ``a = b`` iff ``a ⊑ b`` and ``b ⊑ a``."""
        return self.leq(a, b) and self.leq(b, a)

    def is_bottom(self, a: L) -> bool:
        """Is ``a`` the bottom element?"""
        return self.eq(a, self.bottom())

    def join_all(self, values: Iterable[L]) -> L:
        """Join a sequence of values."""
        result = self.bottom()
        for v in values:
            result = self.join(result, v)
        return result


# ===========================================================================
# DATAFLOW RESULT
# ===========================================================================

@dataclass
class DataflowResult(Generic[L]):
    """Container for dataflow analysis results.

    Attributes
    ----------
    facts_in : dict
        Map from CFG node → incoming (pre-node) dataflow fact.
    facts_out : dict
        Map from CFG node → outgoing (post-node) dataflow fact.
    iterations : int
        Number of worklist iterations performed.
    converged : bool
        Whether the analysis reached a fixpoint (vs. hitting the limit).
    elapsed_seconds : float
        Wall-clock time.
    history : dict
        Map from CFG node → successive incoming facts, recorded only when
        the solver runs with ``trace=True``.
    """
    facts_in: Dict[Any, L] = field(default_factory=dict)
    facts_out: Dict[Any, L] = field(default_factory=dict)
    iterations: int = 0
    converged: bool = False
    elapsed_seconds: float = 0.0
    history: Dict[Any, List[L]] = field(default_factory=dict)


# ===========================================================================
# INTRAPROCEDURAL SOLVER
# ===========================================================================

class IntraproceduralSolver(Generic[L]):
    """Forward fixpoint engine for one procedure.

    Parameters
    ----------
    cfg : CFG
        The control-flow graph (from :mod:`nullflow.ctrlflow_graph`).
    lattice : Lattice[L]
        The dataflow lattice.
    transfer : callable(node, L) → L
        The block transfer function.
    strategy : WorklistStrategy
        Worklist iteration order.
    edge_transfer : callable(edge, L) → L, optional
        Edge-sensitive refinement (e.g., branch conditions).
    initial_value : L, optional
        Initial fact for the entry node.  Defaults to ``lattice.bottom()``.
    max_iterations : int, optional
        Safety bound on iterations; ``None`` means unbounded.
    trace : bool
        Record every change of a node's incoming fact in
        :attr:`DataflowResult.history`.
    """

    def __init__(
        self,
        cfg,
        lattice: Lattice[L],
        transfer: Callable,
        strategy: WorklistStrategy = WorklistStrategy.RPO,
        edge_transfer: Optional[Callable] = None,
        initial_value: Optional[L] = None,
        max_iterations: Optional[int] = None,
        trace: bool = False,
    ) -> None:
        self.cfg = cfg
        self.lattice = lattice
        self.transfer = transfer
        self.strategy = strategy
        self.edge_transfer = edge_transfer
        self.initial_value = (
            initial_value if initial_value is not None
            else lattice.bottom()
        )
        self.max_iterations = max_iterations
        self.trace = trace

        self._nodes: List = list(cfg.nodes)
        self._entry = cfg.entry

    def solve(self) -> DataflowResult[L]:
        """Run the analysis to fixpoint.

        Returns
        -------
        DataflowResult[L]
        """
        t0 = time.monotonic()
        lat = self.lattice

        facts_in: Dict[Any, L] = {node: lat.bottom() for node in self._nodes}
        facts_out: Dict[Any, L] = {node: lat.bottom() for node in self._nodes}
        history: Dict[Any, List[L]] = {}
        visited: Set[Any] = set()

        worklist = self._build_initial_worklist()
        in_worklist: Set = set(worklist)

        iterations = 0
        converged = True

        while worklist:
            if self.max_iterations is not None and iterations >= self.max_iterations:
                converged = False
                break
            node = self._pop_worklist(worklist, in_worklist)
            iterations += 1

            merged = self._merge_incoming(node, facts_out)
            if node is self._entry:
                merged = lat.join(merged, self.initial_value)

            if lat.is_bottom(merged):
                # Not reached (yet): nothing to propagate.
                continue

            if not lat.eq(merged, facts_in[node]):
                facts_in[node] = merged
                if self.trace:
                    history.setdefault(node, []).append(merged)

            new_out = self.transfer(node, merged)
            first_visit = node not in visited
            visited.add(node)
            if not first_visit and lat.eq(new_out, facts_out[node]):
                continue
            facts_out[node] = new_out

            for edge in node.successors:
                succ = edge.dst
                if succ not in in_worklist:
                    worklist.append(succ)
                    in_worklist.add(succ)

        elapsed = time.monotonic() - t0
        logger.debug(
            "solver: %d iterations over %d blocks (converged=%s)",
            iterations, len(self._nodes), converged,
        )

        return DataflowResult(
            facts_in=facts_in,
            facts_out=facts_out,
            iterations=iterations,
            converged=converged,
            elapsed_seconds=elapsed,
            history=history,
        )

    # ----- Internal helpers -------------------------------------------------

    def _merge_incoming(self, node, facts_out: Dict) -> L:
        """Merge facts from predecessors, applying the edge transfer."""
        lat = self.lattice
        result = lat.bottom()
        for edge in node.predecessors:
            fact = facts_out.get(edge.src, lat.bottom())
            if lat.is_bottom(fact):
                continue
            if self.edge_transfer is not None:
                fact = self.edge_transfer(edge, fact)
            result = lat.join(result, fact)
        return result

    def _build_initial_worklist(self) -> Deque:
        """Build the initial worklist based on the chosen strategy."""
        if self.strategy == WorklistStrategy.RPO:
            order = self._reverse_postorder()
        else:
            order = list(self._nodes)
        return deque(order)

    def _pop_worklist(self, worklist: Deque, in_worklist: Set):
        """Pop the next node from the worklist."""
        if self.strategy == WorklistStrategy.LIFO:
            node = worklist.pop()
        else:
            node = worklist.popleft()
        in_worklist.discard(node)
        return node

    def _reverse_postorder(self) -> List:
        """Compute reverse post-order of CFG nodes (iterative DFS)."""
        if hasattr(self.cfg, "reverse_postorder"):
            return self.cfg.reverse_postorder()

        visited: Set = set()
        order: List = []
        for root in [self._entry] + self._nodes:
            if root is None or root in visited:
                continue
            visited.add(root)
            stack = [(root, iter(root.successors))]
            while stack:
                node, it = stack[-1]
                advanced = False
                for edge in it:
                    if edge.dst not in visited:
                        visited.add(edge.dst)
                        stack.append((edge.dst, iter(edge.dst.successors)))
                        advanced = True
                        break
                if not advanced:
                    order.append(node)
                    stack.pop()
        order.reverse()
        return order


__all__ = [
    "WorklistStrategy",
    "Lattice",
    "DataflowResult",
    "IntraproceduralSolver",
]

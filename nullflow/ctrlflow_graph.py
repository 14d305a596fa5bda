"""
nullflow.ctrlflow_graph
=======================

Intraprocedural control-flow graphs over normalized statements.

Each procedure yields one CFG.  A CFG is a directed graph whose nodes are
*basic blocks* (straight-line sequences of :mod:`nullflow.ir` statements)
and whose edges carry control-flow semantics (fall-through, branch-true,
branch-false, return).

Block ids are chosen by the front end and are stable across runs; the
synthetic exit block uses :data:`EXIT_ID`.

Public API
----------
    EdgeKind         - classification of an edge
    CFGNode          - a single basic block
    CFGEdge          - a directed edge between two CFGNodes
    CFG              - the control flow graph for one procedure

Typical usage::

    cfg = CFG("Student.SetEmptyIfNull")
    cfg.add_block(0, [Branch(null_test(Read("text"), "is null"))])
    cfg.add_block(1, [Assign("text", Literal(""))])
    cfg.add_block(2, [Return()])
    cfg.connect(0, 1, EdgeKind.BRANCH_TRUE)
    cfg.connect(0, 2, EdgeKind.BRANCH_FALSE)
    cfg.connect(1, 2)
    cfg.finalize()

Implementation notes
--------------------
* ``connect`` accepts ids that are not (yet) declared; dangling references
  are reported by :meth:`CFG.validate` so that a broken procedure fails on
  its own when analysed instead of failing the whole input document.
* Blocks ending in ``return`` (or with no successors and no ``throw``) are
  wired to the exit block by :meth:`CFG.finalize`.
"""

from __future__ import annotations

import enum
from typing import (
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from nullflow.errors import MalformedCFGError
from nullflow.ir import Branch, Return, Statement, Throw

EXIT_ID = -1


# ---------------------------------------------------------------------------
# Edge kinds
# ---------------------------------------------------------------------------

class EdgeKind(enum.Enum):
    """Classification of a CFG edge."""

    FALL_THROUGH = "fall-through"
    BRANCH_TRUE = "branch-true"
    BRANCH_FALSE = "branch-false"
    RETURN = "return"

    @classmethod
    def from_condition(cls, condition: Optional[str]) -> EdgeKind:
        """Map a front-end edge annotation (``true``/``false``/``None``)."""
        if condition is None:
            return cls.FALL_THROUGH
        key = str(condition).strip().lower()
        if key in ("true", "t", "branch-true"):
            return cls.BRANCH_TRUE
        if key in ("false", "f", "branch-false"):
            return cls.BRANCH_FALSE
        if key in ("", "unconditional", "fall-through", "always"):
            return cls.FALL_THROUGH
        raise ValueError(f"unknown edge condition: {condition!r}")

    @property
    def is_conditional(self) -> bool:
        return self in (EdgeKind.BRANCH_TRUE, EdgeKind.BRANCH_FALSE)


# ---------------------------------------------------------------------------
# CFGNode  –  a basic block
# ---------------------------------------------------------------------------

class CFGNode:
    """A basic block in the CFG.

    Attributes
    ----------
    id : int
        Identifier chosen by the front end (unique within the CFG).
    statements : list
        Ordered statements of this block.  Empty for the synthetic exit.
    kind : str
        ``"entry"``, ``"exit"`` or ``"body"``.
    successors : list[CFGEdge]
        Outgoing edges.
    predecessors : list[CFGEdge]
        Incoming edges.
    """

    __slots__ = (
        "id",
        "statements",
        "kind",
        "successors",
        "predecessors",
    )

    def __init__(
        self,
        node_id: int,
        statements: Optional[Sequence[Statement]] = None,
        kind: str = "body",
    ) -> None:
        self.id: int = node_id
        self.statements: List[Statement] = list(statements or [])
        self.kind: str = kind
        self.successors: List[CFGEdge] = []
        self.predecessors: List[CFGEdge] = []

    # ----- helpers ----------------------------------------------------------

    @property
    def terminator(self) -> Optional[Statement]:
        """Last statement of the block, or ``None``."""
        return self.statements[-1] if self.statements else None

    @property
    def branch(self) -> Optional[Branch]:
        term = self.terminator
        return term if isinstance(term, Branch) else None

    def label(self) -> str:
        """Return a compact, human-readable label for this block."""
        if not self.statements:
            return f"[{self.kind}]"
        names = [type(s).__name__ for s in self.statements[:4]]
        s = " ; ".join(names)
        if len(self.statements) > 4:
            s += " …"
        return s

    def __repr__(self) -> str:
        return f"CFGNode(id={self.id}, kind={self.kind!r}, nstmts={len(self.statements)})"

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other) -> bool:
        if isinstance(other, CFGNode):
            return self.id == other.id
        return NotImplemented


# ---------------------------------------------------------------------------
# CFGEdge
# ---------------------------------------------------------------------------

class CFGEdge:
    """A directed edge in the CFG."""

    __slots__ = ("src", "dst", "kind")

    def __init__(
        self,
        src: CFGNode,
        dst: CFGNode,
        kind: EdgeKind = EdgeKind.FALL_THROUGH,
    ) -> None:
        self.src = src
        self.dst = dst
        self.kind = kind

    def __repr__(self) -> str:
        return (
            f"CFGEdge(BB{self.src.id} -> BB{self.dst.id}, "
            f"kind={self.kind.value!r})"
        )

    def __hash__(self) -> int:
        return hash((self.src.id, self.dst.id, self.kind))

    def __eq__(self, other) -> bool:
        if isinstance(other, CFGEdge):
            return (
                self.src.id == other.src.id
                and self.dst.id == other.dst.id
                and self.kind == other.kind
            )
        return NotImplemented


# ---------------------------------------------------------------------------
# CFG
# ---------------------------------------------------------------------------

class CFG:
    """Intraprocedural control flow graph for a single procedure.

    Attributes
    ----------
    procedure_id : str
        Procedure this CFG belongs to (used in error messages).
    entry : CFGNode or None
        First block executed; defaults to the first block added.
    exit : CFGNode
        Synthetic exit block (no statements).
    nodes : list[CFGNode]
        All basic blocks in declaration order, exit last.
    edges : list[CFGEdge]
        All edges.
    """

    def __init__(self, procedure_id: str = "") -> None:
        self.procedure_id = procedure_id
        self.exit = CFGNode(EXIT_ID, kind="exit")
        self.entry: Optional[CFGNode] = None
        self._blocks: Dict[int, CFGNode] = {}
        self._order: List[CFGNode] = []
        self.edges: List[CFGEdge] = []
        self._pending: List[Tuple[int, int, EdgeKind]] = []
        self._problems: List[str] = []
        self._finalized = False

    # ----- graph mutation ---------------------------------------------------

    def add_block(
        self,
        block_id: int,
        statements: Optional[Sequence[Statement]] = None,
        *,
        entry: bool = False,
    ) -> CFGNode:
        """Create and register a block; the first block is the entry by default."""
        if block_id == EXIT_ID:
            self._problems.append(f"block id {EXIT_ID} is reserved for the exit block")
            return self.exit
        if block_id in self._blocks:
            self._problems.append(f"duplicate block id {block_id}")
            return self._blocks[block_id]
        node = CFGNode(block_id, statements)
        self._blocks[block_id] = node
        self._order.append(node)
        if entry or self.entry is None:
            if self.entry is not None:
                self.entry.kind = "body"
            self.entry = node
            node.kind = "entry"
        return node

    def set_entry(self, block_id: int) -> None:
        node = self._blocks.get(block_id)
        if node is None:
            self._problems.append(f"entry block {block_id} does not exist")
            return
        if self.entry is not None:
            self.entry.kind = "body"
        self.entry = node
        node.kind = "entry"

    def add_edge(
        self,
        src: CFGNode,
        dst: CFGNode,
        kind: EdgeKind = EdgeKind.FALL_THROUGH,
    ) -> CFGEdge:
        """Create an edge, register it, and wire up predecessor/successor lists."""
        e = CFGEdge(src, dst, kind=kind)
        self.edges.append(e)
        src.successors.append(e)
        dst.predecessors.append(e)
        return e

    def connect(
        self,
        src_id: int,
        dst_id: int,
        kind: EdgeKind = EdgeKind.FALL_THROUGH,
    ) -> None:
        """Record an edge by block id; resolved by :meth:`finalize`."""
        self._pending.append((src_id, dst_id, kind))

    def finalize(self) -> CFG:
        """Resolve pending edges and wire returning blocks to the exit."""
        if self._finalized:
            return self
        for src_id, dst_id, kind in self._pending:
            src = self._blocks.get(src_id)
            dst = self._blocks.get(dst_id)
            if src is None:
                self._problems.append(f"edge from unknown block {src_id}")
                continue
            if dst is None:
                self._problems.append(
                    f"dangling successor: block {src_id} -> unknown block {dst_id}"
                )
                continue
            self.add_edge(src, dst, kind)
        self._pending.clear()

        for node in self._order:
            term = node.terminator
            if isinstance(term, Throw):
                continue
            if isinstance(term, Return) or not node.successors:
                self.add_edge(node, self.exit, EdgeKind.RETURN)
        self._finalized = True
        return self

    # ----- queries ----------------------------------------------------------

    @property
    def nodes(self) -> List[CFGNode]:
        return self._order + [self.exit]

    @property
    def blocks(self) -> List[CFGNode]:
        """Body blocks in declaration order (exit excluded)."""
        return list(self._order)

    def block(self, block_id: int) -> CFGNode:
        if block_id == EXIT_ID:
            return self.exit
        return self._blocks[block_id]

    def successors_of(self, node: CFGNode) -> List[CFGNode]:
        return [e.dst for e in node.successors]

    def predecessors_of(self, node: CFGNode) -> List[CFGNode]:
        return [e.src for e in node.predecessors]

    def reachable_from(self, start: CFGNode) -> Set[CFGNode]:
        """Return the set of nodes reachable from *start*."""
        visited: Set[CFGNode] = set()
        worklist = [start]
        while worklist:
            n = worklist.pop()
            if n in visited:
                continue
            visited.add(n)
            for e in n.successors:
                worklist.append(e.dst)
        return visited

    def reverse_postorder(self) -> List[CFGNode]:
        """Reverse post-order from the entry, then any unreachable blocks."""
        visited: Set[CFGNode] = set()
        order: List[CFGNode] = []
        roots = ([self.entry] if self.entry is not None else []) + self.nodes
        for root in roots:
            if root in visited:
                continue
            visited.add(root)
            stack: List[Tuple[CFGNode, Iterator[CFGEdge]]] = [(root, iter(root.successors))]
            while stack:
                node, it = stack[-1]
                for edge in it:
                    if edge.dst not in visited:
                        visited.add(edge.dst)
                        stack.append((edge.dst, iter(edge.dst.successors)))
                        break
                else:
                    order.append(node)
                    stack.pop()
        order.reverse()
        return order

    def dominators(self) -> Dict[CFGNode, Set[CFGNode]]:
        """Compute the dominator sets using the iterative algorithm."""
        dom: Dict[CFGNode, Set[CFGNode]] = {}
        reachable = self.reachable_from(self.entry) if self.entry else set()
        nodes = [n for n in self.reverse_postorder() if n in reachable]
        for n in nodes:
            dom[n] = set(reachable)
        if self.entry is not None:
            dom[self.entry] = {self.entry}
        changed = True
        while changed:
            changed = False
            for n in nodes:
                if n is self.entry:
                    continue
                preds = [p for p in self.predecessors_of(n) if p in dom]
                new_dom = set.intersection(*(dom[p] for p in preds)) if preds else set()
                new_dom = new_dom | {n}
                if new_dom != dom[n]:
                    dom[n] = new_dom
                    changed = True
        return dom

    def back_edges(self) -> List[CFGEdge]:
        """Return edges whose destination dominates their source (loop back-edges)."""
        dom = self.dominators()
        return [e for e in self.edges if e.dst in dom.get(e.src, set())]

    def loop_headers(self) -> List[CFGNode]:
        headers: List[CFGNode] = []
        for e in self.back_edges():
            if e.dst not in headers:
                headers.append(e.dst)
        return headers

    # ----- validation -------------------------------------------------------

    def validate(self) -> None:
        """Raise :class:`MalformedCFGError` on the first structural problem."""
        pid = self.procedure_id
        self.finalize()
        if self._problems:
            raise MalformedCFGError(pid, self._problems[0])
        if self.entry is None:
            raise MalformedCFGError(pid, "no entry block")

        for node in self._order:
            for idx, stmt in enumerate(node.statements[:-1]):
                if isinstance(stmt, (Branch, Return, Throw)):
                    raise MalformedCFGError(
                        pid,
                        f"block {node.id}: {type(stmt).__name__.lower()} at "
                        f"statement {idx} is not the last statement",
                    )
            kinds = [e.kind for e in node.successors]
            if node.branch is not None:
                if (kinds.count(EdgeKind.BRANCH_TRUE) != 1
                        or kinds.count(EdgeKind.BRANCH_FALSE) != 1
                        or len(kinds) != 2):
                    raise MalformedCFGError(
                        pid,
                        f"block {node.id}: branch needs exactly one true and "
                        f"one false successor",
                    )
            elif any(k.is_conditional for k in kinds):
                raise MalformedCFGError(
                    pid, f"block {node.id}: conditional edge without a branch"
                )
            term = node.terminator
            if isinstance(term, (Return, Throw)) and any(
                k is not EdgeKind.RETURN for k in kinds
            ):
                raise MalformedCFGError(
                    pid, f"block {node.id}: successors after {type(term).__name__.lower()}"
                )

        reachable = self.reachable_from(self.entry)
        unreachable = [n for n in self._order if n not in reachable]
        on_cycle = self._cycle_members(unreachable)
        for node in unreachable:
            if node in on_cycle:
                raise MalformedCFGError(
                    pid, f"block {node.id} is on a cycle unreachable from the entry"
                )

    def _cycle_members(self, candidates: List[CFGNode]) -> Set[CFGNode]:
        """Nodes among *candidates* that lie on a cycle within *candidates*."""
        pool = set(candidates)
        members: Set[CFGNode] = set()
        for node in candidates:
            seen: Set[CFGNode] = set()
            stack = [e.dst for e in node.successors if e.dst in pool]
            while stack:
                cur = stack.pop()
                if cur is node:
                    members.add(node)
                    break
                if cur in seen:
                    continue
                seen.add(cur)
                stack.extend(e.dst for e in cur.successors if e.dst in pool)
        return members

    # ----- serialisation helpers --------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation of this CFG."""
        lines = ["digraph CFG {"]
        if title:
            lines.append(f'  label="{title}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        for n in self.nodes:
            lbl = n.label().replace('"', '\\"')
            color = ""
            if n.kind == "entry":
                color = ', style=filled, fillcolor="#ccffcc"'
            elif n.kind == "exit":
                color = ', style=filled, fillcolor="#ffcccc"'
            lines.append(f'  BB{n.id} [label="BB{n.id}\\n{lbl}"{color}];')
        for e in self.edges:
            style = ""
            if e.kind == EdgeKind.BRANCH_TRUE:
                style = ', color=green, fontcolor=green'
            elif e.kind == EdgeKind.BRANCH_FALSE:
                style = ', color=red, fontcolor=red'
            elif e.kind == EdgeKind.RETURN:
                style = ', style=dashed'
            lines.append(
                f'  BB{e.src.id} -> BB{e.dst.id} '
                f'[label="{e.kind.value}"{style}];'
            )
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CFG(procedure={self.procedure_id!r}, nodes={len(self.nodes)}, "
            f"edges={len(self.edges)})"
        )


__all__ = [
    "EXIT_ID",
    "EdgeKind",
    "CFGNode",
    "CFGEdge",
    "CFG",
]

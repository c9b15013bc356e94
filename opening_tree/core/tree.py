"""Position tree with transposition merging.

The manager owns a root node, a cursor and an index mapping FEN -> node.
Every distinct position has exactly one node. Playing a move that reaches
an already indexed position links the existing node under the cursor
instead of creating a second one, so child lists form a DAG while each
node keeps a single ``parent`` for path and back navigation.

Usage:

    tree = TreeManager()
    e4 = tree.apply_move("e4", strategy_label="King pawn")
    tree.navigate_to(e4)
    tree.import_lines("d4 d5 c4\\nNf3 d5 d4")
    data = tree.export_tree()
"""

from __future__ import annotations

import json
import logging
from typing import Dict, Iterator, List, Optional, Sequence, Union

from pydantic import ValidationError

from opening_tree.config import CONFIG
from opening_tree.errors import TreeFormatError, TreeIntegrityError

from . import board as rules
from .grouping import Cluster, cluster_by_top_replies
from .node import MoveInfo, PositionNode
from .serde import NodePayload, TreePayload, dump_tree, parse_line_record

logger = logging.getLogger(__name__)


class TreeManager:
    def __init__(self, start_fen: Optional[str] = None):
        start_fen = start_fen or CONFIG.tree.start_fen
        start_fen = rules.canonical_fen(start_fen) or start_fen
        self.root = PositionNode(position=start_fen)
        self.current = self.root
        self._index: Dict[str, PositionNode] = {start_fen: self.root}

    # ------------------------------------------------------------------
    # identity
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._index)

    def __contains__(self, node: PositionNode) -> bool:
        return self._index.get(node.position) is node

    def node_by_position(self, fen: str) -> Optional[PositionNode]:
        return self._index.get(fen)

    def get_legal_moves(self) -> List[rules.LegalMove]:
        return rules.legal_moves(self.current.position)

    # ------------------------------------------------------------------
    # move application
    # ------------------------------------------------------------------

    def apply_move(self, notation: str, strategy_label: Optional[str] = None,
                   line_tag: Optional[str] = None) -> Optional[PositionNode]:
        """Play ``notation`` from the cursor. The cursor does not move.

        Returns the reached node (new or merged), or None if the rules
        engine rejects the move.
        """
        return self._play_from(self.current, notation, strategy_label, line_tag)

    def apply_moves(self, notations: Sequence[str], strategy_label: Optional[str] = None,
                    line_tag: Optional[str] = None) -> List[PositionNode]:
        """Play a sequence from the cursor, stopping at the first illegal move."""
        reached = []
        node = self.current
        for notation in notations:
            node = self._play_from(node, notation, strategy_label, line_tag)
            if node is None:
                break
            reached.append(node)
        return reached

    def _play_from(self, parent: PositionNode, notation: str,
                   strategy_label: Optional[str], line_tag: Optional[str]) -> Optional[PositionNode]:
        played = rules.play_move(parent.position, notation)
        if played is None:
            logger.debug("Rejected move %r at %s", notation, parent.position)
            return None
        fen, move = played

        existing = self._index.get(fen)
        if existing is not None:
            if parent.add_child(existing):
                logger.debug("Transposition: %s linked under %s", move.notation, parent.label())
            existing.annotate(strategy_label, line_tag)
            return existing

        return self._create_child(parent, fen, move, strategy_label, line_tag)

    def _create_child(self, parent: PositionNode, fen: str, move: Optional[MoveInfo],
                      strategy_label: Optional[str], line_tag: Optional[str]) -> PositionNode:
        if move is not None:
            self._check_round_trip(parent.position, move, fen)
        node = PositionNode(
            position=fen,
            incoming_move=move,
            parent=parent,
            strategy_label=strategy_label,
            line_tag=line_tag if line_tag is not None else parent.line_tag,
        )
        parent.add_child(node)
        self._index[fen] = node
        return node

    @staticmethod
    def _check_round_trip(parent_fen: str, move: MoveInfo, fen: str):
        replay = rules.play_move(parent_fen, move.notation)
        if replay is None or replay[0] != fen:
            raise TreeIntegrityError(
                f"{move.notation} from {parent_fen} does not reach {fen}"
            )

    # ------------------------------------------------------------------
    # navigation
    # ------------------------------------------------------------------

    def navigate_to(self, target: Union[PositionNode, str]) -> Optional[str]:
        """Move the cursor to an indexed node (or FEN). Returns the FEN or None."""
        if isinstance(target, str):
            node = self._index.get(target)
        else:
            node = target if target in self else None
        if node is None:
            logger.warning("Node not in tree: %s", getattr(target, "position", target))
            return None
        self.current = node
        return node.position

    def navigate_by_move(self, notation: str) -> Optional[PositionNode]:
        """Move the cursor to the child reached by ``notation``."""
        played = rules.play_move(self.current.position, notation)
        if played is not None:
            fen = played[0]
            match = next((c for c in self.current.children if c.position == fen), None)
        else:
            match = next(
                (c for c in self.current.children
                 if c.incoming_move and c.incoming_move.notation == notation),
                None,
            )
        if match is None:
            return None
        self.current = match
        return match

    def go_back(self) -> Optional[PositionNode]:
        if self.current.parent is None:
            return None
        self.current = self.current.parent
        return self.current

    def go_to_root(self) -> PositionNode:
        self.current = self.root
        return self.root

    def current_path(self) -> List[PositionNode]:
        path = []
        node = self.current
        while node is not None:
            path.append(node)
            node = node.parent
        path.reverse()
        return path

    def current_depth(self) -> int:
        return len(self.current_path()) - 1

    def iter_nodes(self) -> Iterator[PositionNode]:
        """Pre-order walk over child lists, each node once."""
        seen = set()
        stack = [self.root]
        while stack:
            node = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))
            yield node
            stack.extend(reversed(node.children))

    def all_nodes(self) -> List[PositionNode]:
        return list(self.iter_nodes())

    # ------------------------------------------------------------------
    # grouping & filtering
    # ------------------------------------------------------------------

    def children_grouped_by_strategy(self) -> Dict[str, List[PositionNode]]:
        groups: Dict[str, List[PositionNode]] = {}
        for child in self.current.children:
            key = child.strategy_label or CONFIG.tree.ungrouped_label
            groups.setdefault(key, []).append(child)
        return groups

    def filter_children(self, strategy_label: Optional[str] = None,
                        line_tag: Optional[str] = None) -> List[PositionNode]:
        return [
            c for c in self.current.children
            if (strategy_label is None or c.strategy_label == strategy_label)
            and (line_tag is None or c.line_tag == line_tag)
        ]

    def strategy_labels(self) -> List[str]:
        return sorted({n.strategy_label for n in self.iter_nodes() if n.strategy_label})

    def line_tags(self) -> List[str]:
        return sorted({n.line_tag for n in self.iter_nodes() if n.line_tag})

    def cluster_children(self, top_n: Optional[int] = None) -> List[Cluster]:
        top_n = CONFIG.tree.cluster_top_n if top_n is None else top_n
        return cluster_by_top_replies(self.current.children, top_n)

    # ------------------------------------------------------------------
    # serialization
    # ------------------------------------------------------------------

    def export_tree(self) -> dict:
        return dump_tree(self.root)

    def export_json(self, indent: Optional[int] = None) -> str:
        indent = CONFIG.export_indent if indent is None else indent
        return json.dumps(self.export_tree(), indent=indent, ensure_ascii=False)

    def import_tree(self, data) -> PositionNode:
        """Replace the whole tree with ``data`` (an exported dict).

        Raises TreeFormatError before touching the current tree if any
        node in the payload is malformed.
        """
        root_data = self._validate_node(self._validate_envelope(data).root)
        start_fen = rules.canonical_fen(root_data.position) or root_data.position
        root = PositionNode(
            position=start_fen,
            evaluation=root_data.evaluation,
            strategy_label=root_data.strategy_label,
            line_tag=root_data.line_tag,
        )
        index = {root.position: root}

        edges = 0
        stack = [(root, raw) for raw in reversed(root_data.children)]
        while stack:
            parent, raw = stack.pop()
            data = self._validate_node(raw)
            node = index.get(data.position)
            if node is None:
                node = PositionNode(
                    position=data.position,
                    incoming_move=data.move.to_move(parent.position) if data.move else None,
                    parent=parent,
                    evaluation=data.evaluation,
                    strategy_label=data.strategy_label,
                    line_tag=data.line_tag if data.line_tag is not None else parent.line_tag,
                )
                index[node.position] = node
            else:
                # same position written once per parent edge
                node.annotate(data.strategy_label, data.line_tag)
                if data.evaluation is not None:
                    node.set_evaluation(data.evaluation)
                if self._reaches(node, parent):
                    logger.warning("Skipping cyclic edge to %s in payload", node.position)
                    continue
            parent.add_child(node)
            edges += 1
            stack.extend((node, child) for child in reversed(data.children))

        self.root = root
        self.current = root
        self._index = index
        logger.info("Imported tree with %d nodes (%d edges)", len(index), edges)
        return root

    @staticmethod
    def _validate_envelope(data) -> TreePayload:
        try:
            return TreePayload.model_validate(data)
        except ValidationError as e:
            raise TreeFormatError(f"Invalid tree payload: {e}") from e

    @staticmethod
    def _validate_node(raw) -> NodePayload:
        try:
            return NodePayload.model_validate(raw)
        except ValidationError as e:
            raise TreeFormatError(f"Invalid tree node: {e}") from e

    @staticmethod
    def _reaches(src: PositionNode, target: PositionNode) -> bool:
        """True if ``target`` is ``src`` or lies below it along child links."""
        seen = set()
        stack = [src]
        while stack:
            node = stack.pop()
            if node is target:
                return True
            if id(node) in seen:
                continue
            seen.add(id(node))
            stack.extend(node.children)
        return False

    def import_json(self, text: str) -> PositionNode:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise TreeFormatError(f"Invalid JSON: {e}") from e
        return self.import_tree(data)

    # ------------------------------------------------------------------
    # line-notation import
    # ------------------------------------------------------------------

    def import_lines(self, text: str, line_tag: Optional[str] = None) -> int:
        """Load ``[<fen> |] <move> <move> ...`` records, one per line.

        Each record replays its moves until the first illegal one. Returns
        the number of non-blank records attempted.
        """
        processed = 0
        for lineno, line in enumerate(text.splitlines(), 1):
            record = parse_line_record(line)
            if record is None:
                continue
            processed += 1

            start = self._start_node(record.start, line_tag)
            if start is None:
                logger.debug("Line %d: unreadable start position %r", lineno, record.start)
                continue

            node = start
            for ply, notation in enumerate(record.moves, 1):
                nxt = self._play_from(node, notation, None, line_tag)
                if nxt is None:
                    logger.debug("Line %d: stopped at ply %d (%s)", lineno, ply, notation)
                    break
                node = nxt
        logger.info("Imported %d line records", processed)
        return processed

    def _start_node(self, fen: Optional[str], line_tag: Optional[str]) -> Optional[PositionNode]:
        if fen is None:
            return self.root
        if fen in self._index:
            return self._index[fen]
        canonical = rules.canonical_fen(fen)
        if canonical is None:
            return None
        node = self._index.get(canonical)
        if node is None:
            node = self._create_child(self.root, canonical, None, None, line_tag)
        return node

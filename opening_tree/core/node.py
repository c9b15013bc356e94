"""Tree node and move records."""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class MoveInfo:
    notation: str  # SAN as written by the rules engine
    origin: str
    destination: str
    color: str  # "w" / "b", the side that played it
    fullmove_before: int
    uci: Optional[str] = None


@dataclass(eq=False)
class PositionNode:
    """One distinct position in the explored space.

    ``parent`` is the first parent the position was reached from and drives
    path/back navigation. The same node may be listed in the ``children`` of
    several nodes after a transposition. Equality is identity.
    """

    position: str
    incoming_move: Optional[MoveInfo] = None
    parent: Optional["PositionNode"] = field(default=None, repr=False)
    children: List["PositionNode"] = field(default_factory=list, repr=False)
    evaluation: Optional[float] = None
    strategy_label: Optional[str] = None
    line_tag: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def side_to_move(self) -> str:
        parts = self.position.split()
        return parts[1] if len(parts) > 1 else "w"

    @property
    def move_number(self) -> Optional[int]:
        """Fullmove number before the incoming move, None for the root."""
        return self.incoming_move.fullmove_before if self.incoming_move else None

    def depth(self) -> int:
        d = 0
        node = self
        while node.parent is not None:
            d += 1
            node = node.parent
        return d

    def has_child(self, node: "PositionNode") -> bool:
        return any(c is node for c in self.children)

    def add_child(self, node: "PositionNode") -> bool:
        """Append ``node`` unless already listed. Returns True if appended."""
        if self.has_child(node):
            return False
        self.children.append(node)
        return True

    def set_evaluation(self, score: float) -> float:
        """Store ``score`` once; later writes are ignored."""
        if self.evaluation is None:
            self.evaluation = score
        return self.evaluation

    def annotate(self, strategy_label: Optional[str] = None, line_tag: Optional[str] = None):
        """Fill annotations that are still unset."""
        if self.strategy_label is None and strategy_label is not None:
            self.strategy_label = strategy_label
        if self.line_tag is None and line_tag is not None:
            self.line_tag = line_tag

    def label(self) -> str:
        """Short display text: SAN with move number, or 'Start'."""
        mv = self.incoming_move
        if mv is None:
            return "Start"
        prefix = f"{mv.fullmove_before}." if mv.color == "w" else f"{mv.fullmove_before}..."
        return f"{prefix}{mv.notation}"

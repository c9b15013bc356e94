"""Export payload models and line-notation record parsing.

The JSON interchange format uses camelCase keys::

    {"root": {"position": "<fen>",
              "move": {"notation": "e4", "origin": "e2", "destination": "e4",
                       "color": "w", "fullmoveBefore": 1, "uci": "e2e4"} | null,
              "evaluation": 0.3, "strategyLabel": null, "lineTag": null,
              "children": [...]}}

Snake_case keys are accepted on import and unknown keys are ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .node import MoveInfo, PositionNode

_MOVE_NUMBER = re.compile(r"^\d+\.+$")


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class MovePayload(_Payload):
    notation: str
    origin: Optional[str] = None
    destination: Optional[str] = None
    color: Optional[str] = None
    fullmove_before: Optional[int] = None
    uci: Optional[str] = None

    @classmethod
    def from_move(cls, move: MoveInfo) -> "MovePayload":
        return cls(
            notation=move.notation,
            origin=move.origin,
            destination=move.destination,
            color=move.color,
            fullmove_before=move.fullmove_before,
            uci=move.uci,
        )

    def to_move(self, parent_fen: Optional[str] = None) -> MoveInfo:
        color, fullmove = self.color, self.fullmove_before
        if parent_fen and (color is None or fullmove is None):
            parts = parent_fen.split()
            if color is None and len(parts) > 1:
                color = parts[1]
            if fullmove is None and len(parts) > 5 and parts[5].isdigit():
                fullmove = int(parts[5])
        return MoveInfo(
            notation=self.notation,
            origin=self.origin or "",
            destination=self.destination or "",
            color=color or "w",
            fullmove_before=fullmove or 1,
            uci=self.uci,
        )


class NodePayload(_Payload):
    """One node's own fields. ``children`` stays raw; nesting is walked by the caller."""

    position: str = Field(min_length=1)
    move: Optional[MovePayload] = None
    evaluation: Optional[float] = None
    strategy_label: Optional[str] = None
    line_tag: Optional[str] = None
    children: List[Dict[str, Any]] = []


class TreePayload(_Payload):
    root: Dict[str, Any]


def serialize_node(node: PositionNode) -> dict:
    return NodePayload(
        position=node.position,
        move=MovePayload.from_move(node.incoming_move) if node.incoming_move else None,
        evaluation=node.evaluation,
        strategy_label=node.strategy_label,
        line_tag=node.line_tag,
    ).model_dump(by_alias=True)


def dump_tree(root: PositionNode) -> dict:
    """Nested export dict, built with an explicit stack; lines can run to hundreds of plies."""
    # Transposed nodes are written once per parent edge.
    out = serialize_node(root)
    stack = [(child, out["children"]) for child in reversed(root.children)]
    while stack:
        node, siblings = stack.pop()
        data = serialize_node(node)
        siblings.append(data)
        stack.extend((child, data["children"]) for child in reversed(node.children))
    return {"root": out}


@dataclass
class LineRecord:
    start: Optional[str]  # None means the tree root
    moves: List[str]


def parse_line_record(line: str) -> Optional[LineRecord]:
    """Split ``[<fen> |] <move> <move> ...``. Blank lines give None."""
    line = line.strip()
    if not line:
        return None
    start = None
    if "|" in line:
        prefix, line = line.split("|", 1)
        start = prefix.strip() or None
    moves = [tok for tok in line.split() if not _MOVE_NUMBER.match(tok)]
    return LineRecord(start=start, moves=moves)

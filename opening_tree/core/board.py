"""Rules-engine adapter over python-chess.

Everything here works on FEN strings so the tree never holds a live
``chess.Board``. Illegal or unreadable input is reported as ``None`` (or an
empty list), never raised.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import chess

from .node import MoveInfo


@dataclass(frozen=True)
class LegalMove:
    notation: str
    origin: str
    destination: str
    color: str
    uci: str


def color_code(color: chess.Color) -> str:
    return "w" if color == chess.WHITE else "b"


def load_board(fen: str) -> Optional[chess.Board]:
    """Return a board for ``fen`` or None if python-chess rejects it."""
    try:
        return chess.Board(fen)
    except ValueError:
        return None


def canonical_fen(fen: str) -> Optional[str]:
    """Normalize a FEN the way the tree keys positions."""
    board = load_board(fen.strip())
    return board.fen() if board is not None else None


def parse_move(board: chess.Board, notation: str) -> Optional[chess.Move]:
    """Parse SAN, falling back to UCI. Returns None if illegal or garbage."""
    notation = notation.strip()
    if not notation:
        return None
    try:
        move = board.parse_san(notation)
        # parse_san accepts "--" as a null move
        return move if move else None
    except ValueError:
        pass
    try:
        move = chess.Move.from_uci(notation)
    except ValueError:
        return None
    return move if move in board.legal_moves else None


def play_move(fen: str, notation: str) -> Optional[Tuple[str, MoveInfo]]:
    """Play ``notation`` on ``fen``.

    Returns ``(new_fen, move_info)`` or None when the position cannot be
    read or the move is not legal there.
    """
    board = load_board(fen)
    if board is None:
        return None
    move = parse_move(board, notation)
    if move is None:
        return None
    info = MoveInfo(
        notation=board.san(move),
        origin=chess.square_name(move.from_square),
        destination=chess.square_name(move.to_square),
        color=color_code(board.turn),
        fullmove_before=board.fullmove_number,
        uci=move.uci(),
    )
    board.push(move)
    return board.fen(), info


def legal_moves(fen: str) -> List[LegalMove]:
    """Return legal moves for ``fen`` in generation order."""
    board = load_board(fen)
    if board is None:
        return []
    mover = color_code(board.turn)
    return [
        LegalMove(
            notation=board.san(m),
            origin=chess.square_name(m.from_square),
            destination=chess.square_name(m.to_square),
            color=mover,
            uci=m.uci(),
        )
        for m in board.legal_moves
    ]

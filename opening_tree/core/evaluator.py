"""Async position evaluators and per-node evaluation caching.

Evaluators return a score in pawns from the point of view of the side to
move at the scored FEN. ``NodeEvaluator`` turns that into the point of view
of the side that moved into the node and stores it on the node once.
"""

import asyncio
import logging
from typing import Dict, Optional

import chess
import chess.engine

from opening_tree.config import CONFIG, Config

from .node import PositionNode

logger = logging.getLogger(__name__)


class BaseEvaluator:
    async def evaluate(self, fen: str, depth: int) -> float:
        raise NotImplementedError

    async def close(self):
        pass


class MaterialEvaluator(BaseEvaluator):
    """Static material count. Depth is ignored."""

    def __init__(self, piece_values: Optional[Dict[str, int]] = None, mate_score: Optional[float] = None):
        self.piece_values = piece_values or CONFIG.eval.piece_values
        self.mate_score = CONFIG.eval.mate_score if mate_score is None else mate_score

    def evaluate_board(self, board: chess.Board) -> int:
        """Return static eval in centipawns, positive favors side to move."""
        if board.is_checkmate():
            return -int(self.mate_score * 100)
        if board.is_insufficient_material() or board.is_stalemate():
            return 0

        score = 0
        for piece in board.piece_map().values():
            value = self.piece_values.get(chess.piece_name(piece.piece_type).upper(), 0)
            score += value if piece.color == chess.WHITE else -value
        return score if board.turn == chess.WHITE else -score

    async def evaluate(self, fen: str, depth: int) -> float:
        return self.evaluate_board(chess.Board(fen)) / 100


class UciEvaluator(BaseEvaluator):
    """Scores positions with an external UCI engine such as Stockfish."""

    def __init__(self, path: str, threads: int = 1, hash_mb: int = 64, mate_score: float = 100.0):
        self.path = path
        self.threads = threads
        self.hash_mb = hash_mb
        self.mate_score = mate_score
        self.engine: Optional[chess.engine.UciProtocol] = None
        self._lock = asyncio.Lock()

    async def start(self):
        if self.engine is not None:
            return
        _transport, self.engine = await chess.engine.popen_uci(self.path)
        await self.engine.configure({"Threads": self.threads, "Hash": self.hash_mb})
        logger.info("UCI engine started: %s", self.path)

    async def evaluate(self, fen: str, depth: int) -> float:
        board = chess.Board(fen)
        async with self._lock:
            await self.start()
            info = await self.engine.analyse(board, chess.engine.Limit(depth=depth))
        return score_to_pawns(info["score"].relative, self.mate_score)

    async def close(self):
        if self.engine is None:
            return
        try:
            await self.engine.quit()
        except chess.engine.EngineTerminatedError:
            pass
        self.engine = None


def score_to_pawns(score: chess.engine.Score, mate_score: float) -> float:
    """Centipawn/mate score -> pawns; mates map near +/- ``mate_score``."""
    return score.score(mate_score=int(mate_score * 100)) / 100


def make_evaluator(config: Config = CONFIG) -> BaseEvaluator:
    ev = config.eval
    if ev.engine_path:
        return UciEvaluator(ev.engine_path, ev.threads, ev.hash_mb, ev.mate_score)
    return MaterialEvaluator(ev.piece_values, ev.mate_score)


class NodeEvaluator:
    """Memoizes evaluator results on tree nodes.

    A node that already holds an evaluation never reaches the evaluator,
    and concurrent requests for the same node share one task. Only the
    node's ``evaluation`` field is written.
    """

    def __init__(self, evaluator: BaseEvaluator, depth: Optional[int] = None):
        self.evaluator = evaluator
        self.depth = depth or CONFIG.eval.depth
        self._pending: Dict[PositionNode, asyncio.Future] = {}

    async def evaluate(self, node: PositionNode) -> float:
        if node.evaluation is not None:
            return node.evaluation
        task = self._pending.get(node)
        if task is None:
            task = asyncio.ensure_future(self._run(node))
            self._pending[node] = task
            task.add_done_callback(lambda _t: self._pending.pop(node, None))
        return await task

    async def _run(self, node: PositionNode) -> float:
        raw = await self.evaluator.evaluate(node.position, self.depth)
        # root keeps the side-to-move view; other nodes are scored for the mover
        score = raw if node.is_root else -raw
        return node.set_evaluation(score)

    async def evaluate_children(self, node: PositionNode) -> int:
        """Evaluate unevaluated children one at a time.

        Failures are logged and skipped. Returns how many children hold an
        evaluation afterwards.
        """
        for child in list(node.children):
            if child.evaluation is not None:
                continue
            try:
                await self.evaluate(child)
            except (chess.engine.EngineError, OSError, ValueError, asyncio.TimeoutError) as e:
                logger.warning("Evaluation failed for %s: %s", child.position, e)
        return sum(1 for c in node.children if c.evaluation is not None)

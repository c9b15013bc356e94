"""
Integration test suite for the opening tree.

Tests components working together end-to-end:
- Evaluation caching on nodes (memoization, shared in-flight requests, perspective)
- FastAPI REST API
- Interactive CLI shell
"""

import asyncio
import json

import chess
import pytest

from opening_tree.config import Config
from opening_tree.core.evaluator import (
    BaseEvaluator,
    MaterialEvaluator,
    NodeEvaluator,
    UciEvaluator,
    make_evaluator,
)
from opening_tree.core.tree import TreeManager

E4_FEN = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
QUEEN_UP_FEN = "4k3/8/8/8/8/8/8/4KQ2 w - - 0 1"


class CountingEvaluator(BaseEvaluator):
    """Returns a fixed score and records every call."""

    def __init__(self, score=1.5, fail_on=None):
        self.score = score
        self.fail_on = fail_on or set()
        self.calls = []

    async def evaluate(self, fen, depth):
        self.calls.append((fen, depth))
        await asyncio.sleep(0)
        if fen in self.fail_on:
            raise ValueError("engine choked")
        return self.score


# ════════════════════════════════════════════════════════════════════════════
#  EVALUATION
# ════════════════════════════════════════════════════════════════════════════

class TestMaterialEvaluator:
    def setup_method(self):
        self.ev = MaterialEvaluator()

    def test_starting_position_zero(self):
        assert self.ev.evaluate_board(chess.Board()) == 0

    def test_side_to_move_perspective(self):
        assert self.ev.evaluate_board(chess.Board(QUEEN_UP_FEN)) == 900
        board = chess.Board(QUEEN_UP_FEN)
        board.turn = chess.BLACK
        assert self.ev.evaluate_board(board) == -900

    def test_insufficient_material_draw(self):
        assert self.ev.evaluate_board(chess.Board("4k3/8/8/8/8/8/8/4KN2 w - - 0 1")) == 0

    def test_checkmated_side(self):
        board = chess.Board("rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 1 3")
        assert self.ev.evaluate_board(board) < -5000

    def test_async_pawns(self):
        assert asyncio.run(self.ev.evaluate(QUEEN_UP_FEN, 1)) == 9.0


class TestNodeEvaluator:
    def test_memoized(self):
        tree = TreeManager()
        node = tree.apply_move("e4")
        counting = CountingEvaluator()
        ne = NodeEvaluator(counting, depth=7)

        async def run():
            await ne.evaluate(node)
            await ne.evaluate(node)

        asyncio.run(run())
        assert counting.calls == [(E4_FEN, 7)]
        assert node.evaluation == -1.5

    def test_concurrent_requests_share_one_call(self):
        tree = TreeManager()
        node = tree.apply_move("e4")
        counting = CountingEvaluator()
        ne = NodeEvaluator(counting, depth=3)

        async def run():
            return await asyncio.gather(ne.evaluate(node), ne.evaluate(node))

        assert asyncio.run(run()) == [-1.5, -1.5]
        assert len(counting.calls) == 1

    def test_preset_evaluation_short_circuits(self):
        tree = TreeManager()
        tree.root.set_evaluation(0.2)
        counting = CountingEvaluator()
        assert asyncio.run(NodeEvaluator(counting, 5).evaluate(tree.root)) == 0.2
        assert counting.calls == []

    def test_perspective(self):
        tree = TreeManager(QUEEN_UP_FEN)
        child = tree.apply_move("Kd2")
        ne = NodeEvaluator(MaterialEvaluator(), depth=1)

        async def run():
            await ne.evaluate(tree.root)
            await ne.evaluate(child)

        asyncio.run(run())
        # root: side to move (White); child: the side that played Kd2 (White)
        assert tree.root.evaluation == 9.0
        assert child.evaluation == 9.0

    def test_evaluate_children_skips_failures(self):
        tree = TreeManager()
        tree.apply_move("e4")
        tree.apply_move("d4")
        d4_fen = tree.root.children[1].position
        counting = CountingEvaluator(fail_on={d4_fen})
        ne = NodeEvaluator(counting, depth=2)
        size = tree.size

        done = asyncio.run(ne.evaluate_children(tree.root))
        assert done == 1
        assert tree.root.children[0].evaluation == -1.5
        assert tree.root.children[1].evaluation is None
        assert tree.size == size

    def test_direct_failure_propagates(self):
        tree = TreeManager()
        node = tree.apply_move("e4")
        ne = NodeEvaluator(CountingEvaluator(fail_on={E4_FEN}), depth=2)
        with pytest.raises(ValueError):
            asyncio.run(ne.evaluate(node))
        assert node.evaluation is None

    def test_make_evaluator(self):
        assert isinstance(make_evaluator(Config()), MaterialEvaluator)
        cfg = Config()
        cfg.eval.engine_path = "/opt/stockfish"
        ev = make_evaluator(cfg)
        assert isinstance(ev, UciEvaluator)
        assert ev.engine is None  # started lazily


# ════════════════════════════════════════════════════════════════════════════
#  REST API
# ════════════════════════════════════════════════════════════════════════════

class TestAPIIntegration:
    """Tests FastAPI REST API endpoints."""

    @pytest.fixture(autouse=True)
    def setup_client(self):
        from fastapi.testclient import TestClient
        from interface.api import app

        self.client = TestClient(app)
        # Reset state before each test
        self.client.post("/reset")

    def test_get_tree_initial(self):
        data = self.client.get("/tree").json()
        assert data["fen"] == chess.STARTING_FEN
        assert data["turn"] == "white"
        assert data["depth"] == 0
        assert data["children"] == []
        assert len(data["legal_moves"]) == 20
        assert data["size"] == 1

    def test_moves(self):
        moves = self.client.get("/moves").json()["moves"]
        assert len(moves) == 20
        assert {"notation": "e4", "origin": "e2", "destination": "e4", "color": "w", "uci": "e2e4"} in moves

    def test_add_move(self):
        r = self.client.post("/move", json={"move": "e4", "strategy": "Center"})
        assert r.status_code == 200
        assert r.json()["fen"] == E4_FEN
        assert r.json()["strategy"] == "Center"
        # cursor stays put
        assert self.client.get("/tree").json()["fen"] == chess.STARTING_FEN

    def test_add_illegal_move(self):
        r = self.client.post("/move", json={"move": "e5"})
        assert r.status_code == 400

    def test_navigate_and_back(self):
        self.client.post("/move", json={"move": "e4"})
        r = self.client.post("/navigate", json={"fen": E4_FEN})
        assert r.status_code == 200
        assert r.json()["turn"] == "black"
        assert [p["move"] for p in r.json()["path"]] == [None, "e4"]
        r = self.client.post("/back")
        assert r.json()["fen"] == chess.STARTING_FEN
        assert self.client.post("/back").status_code == 409

    def test_navigate_unknown(self):
        r = self.client.post("/navigate", json={"fen": E4_FEN})
        assert r.status_code == 400

    def test_navigate_by_move(self):
        self.client.post("/move", json={"move": "d4"})
        assert self.client.post("/navigate/move", json={"move": "e4"}).status_code == 400
        r = self.client.post("/navigate/move", json={"move": "d4"})
        assert r.status_code == 200
        assert r.json()["depth"] == 1
        assert self.client.post("/root").json()["depth"] == 0

    def test_grouped_children(self):
        self.client.post("/move", json={"move": "e4", "strategy": "Center"})
        self.client.post("/move", json={"move": "Nf3"})
        self.client.post("/move", json={"move": "d4", "strategy": "Center"})
        groups = self.client.get("/children/grouped").json()
        assert list(groups) == ["Center", "Ungrouped"]
        assert [n["move"] for n in groups["Center"]] == ["e4", "d4"]

    def test_clusters(self):
        self.client.post("/import/lines", json={"text": "e4 e5\nd4 e5\nc4 c5"})
        clusters = self.client.get("/children/clusters", params={"top_n": 1}).json()
        assert [[n["move"] for n in c["nodes"]] for c in clusters] == [["e4", "d4"], ["c4"]]

    def test_labels(self):
        self.client.post("/move", json={"move": "c4", "strategy": "Flank", "line_tag": "English"})
        assert self.client.get("/labels").json() == {"strategies": ["Flank"], "line_tags": ["English"]}

    def test_export_import_round_trip(self):
        self.client.post("/import/lines", json={"text": "e4 e5 Nf3\nd4 d5"})
        exported = self.client.get("/export").json()
        self.client.post("/reset")
        assert self.client.get("/tree").json()["size"] == 1
        r = self.client.post("/import", json=exported)
        assert r.status_code == 200
        assert r.json()["size"] == 6
        assert self.client.get("/export").json() == exported

    def test_import_malformed(self):
        self.client.post("/move", json={"move": "e4"})
        r = self.client.post("/import", json={"root": {"children": []}})
        assert r.status_code == 400
        assert self.client.get("/tree").json()["size"] == 2

    def test_import_lines(self):
        text = f"{chess.STARTING_FEN} | e4 e5\nd4 d5"
        r = self.client.post("/import/lines", json={"text": text, "line_tag": "Rep"})
        assert r.json() == {"records": 2, "size": 5}

    def test_evaluate(self):
        self.client.post("/move", json={"move": "e4"})
        self.client.post("/move", json={"move": "d4"})
        r = self.client.post("/evaluate")
        assert r.status_code == 200
        data = r.json()
        assert data["eval"] == 0
        assert data["children_evaluated"] == 2
        children = self.client.get("/tree").json()["children"]
        assert all(c["eval"] == 0 for c in children)


# ════════════════════════════════════════════════════════════════════════════
#  CLI SHELL
# ════════════════════════════════════════════════════════════════════════════

class TestCLIIntegration:
    def _make_shell(self):
        from interface.cli import TreeShell

        return TreeShell(TreeManager(), NodeEvaluator(MaterialEvaluator(), depth=1))

    def test_play_and_navigate(self):
        shell = self._make_shell()
        assert shell.execute("play e4 King pawn") == "added 1.e4 (?) | King pawn"
        assert shell.tree.current is shell.tree.root
        assert shell.execute("goto e4").endswith("1.e4 (?) | King pawn")
        assert shell.tree.current.position == E4_FEN
        assert shell.execute("back").startswith("Start")
        assert shell.execute("back") == "already at root"

    def test_illegal_and_unknown(self):
        shell = self._make_shell()
        assert shell.execute("play e5") == "illegal move: e5"
        assert shell.execute("goto d4") == "no such variation: d4"
        assert shell.execute("frobnicate").startswith("unknown command")
        assert shell.execute("") == ""

    def test_line_stops_at_illegal(self):
        shell = self._make_shell()
        out = shell.execute("line e4 e5 Ke3")
        assert out == "added 1.e4 1...e5 (stopped at Ke3)"
        assert shell.tree.size == 3

    def test_groups_and_labels(self):
        shell = self._make_shell()
        assert shell.execute("groups") == "no variations added yet"
        shell.execute("play e4 Center")
        shell.execute("play Nf3")
        out = shell.execute("groups")
        assert out.splitlines() == ["Center: 1.e4 (?) | Center", "Ungrouped: 1.Nf3 (?)"]
        assert "Center" in shell.execute("labels")

    def test_clusters(self):
        shell = self._make_shell()
        shell.tree.import_lines("e4 e5\nd4 e5")
        assert shell.execute("clusters 1") == "#1: 1.e4, 1.d4"

    def test_eval(self):
        shell = self._make_shell()
        shell.execute("play e4")
        out = shell.execute("eval").splitlines()
        assert out[0] == "Start (0.00)"
        assert out[1].strip().startswith("1.e4 (")

    def test_eval_failure_keeps_shell_alive(self):
        from interface.cli import TreeShell

        class MissingEngine(BaseEvaluator):
            async def evaluate(self, fen, depth):
                raise FileNotFoundError("no such engine: stockfish")

        shell = TreeShell(TreeManager(), NodeEvaluator(MissingEngine(), depth=1))
        assert shell.execute("eval") == "eval failed: no such engine: stockfish"
        assert shell.tree.root.evaluation is None
        assert shell.execute("moves").startswith("White to move, 20 legal")
        shell.close()

    def test_export_import_files(self, tmp_path):
        shell = self._make_shell()
        shell.execute("line d4 d5 c4")
        path = tmp_path / "tree.json"
        assert "4 positions" in shell.execute(f"export {path}")
        assert json.loads(path.read_text(encoding="utf-8"))["root"]["position"] == chess.STARTING_FEN

        other = self._make_shell()
        assert other.execute(f"import {path}") == "imported 4 positions"
        assert other.tree.export_tree() == shell.tree.export_tree()
        assert other.execute(f"import {tmp_path / 'missing.json'}").startswith("import failed")

    def test_lines_file(self, tmp_path):
        path = tmp_path / "rep.txt"
        path.write_text("1. e4 c5 2. Nf3\n\ne4 e6\n", encoding="utf-8")
        shell = self._make_shell()
        assert shell.execute(f"lines {path} Sicilian") == "processed 2 lines, tree has 5 positions"
        assert shell.tree.line_tags() == ["Sicilian"]

    def test_main_export_mode(self, tmp_path):
        from interface.cli import main

        lines = tmp_path / "rep.txt"
        lines.write_text("e4 e5\n", encoding="utf-8")
        out = tmp_path / "out.json"
        assert main(["--lines", str(lines), "--export", str(out)]) == 0
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["root"]["children"][0]["move"]["notation"] == "e4"

    def test_close_shuts_session_loop(self):
        shell = self._make_shell()
        shell.execute("play e4")
        shell.execute("eval")
        shell.close()
        assert shell._loop.is_closed()

"""FastAPI REST interface for the opening tree."""

import threading
from dataclasses import asdict
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from opening_tree.config import CONFIG, configure_logging
from opening_tree.core.evaluator import NodeEvaluator, make_evaluator
from opening_tree.core.node import PositionNode
from opening_tree.core.tree import TreeManager
from opening_tree.errors import TreeFormatError

configure_logging(CONFIG.log_level)

# Shared tree and evaluator (one exploration session per process).
tree = TreeManager(CONFIG.tree.start_fen)
evaluator = NodeEvaluator(make_evaluator(CONFIG), depth=CONFIG.eval.depth)
_tree_lock = threading.Lock()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await evaluator.evaluator.close()


app = FastAPI(title=CONFIG.ui.app_name, version="1.0.0", lifespan=lifespan)


class MoveRequest(BaseModel):
    move: str  # SAN e.g. "Nf3" (UCI accepted)
    strategy: Optional[str] = None
    line_tag: Optional[str] = None


class NavigateRequest(BaseModel):
    fen: str


class NavigateMoveRequest(BaseModel):
    move: str


class LinesRequest(BaseModel):
    text: str
    line_tag: Optional[str] = None


def node_summary(node: PositionNode) -> Dict[str, Any]:
    mv = node.incoming_move
    return {
        "fen": node.position,
        "move": mv.notation if mv else None,
        "label": node.label(),
        "eval": node.evaluation,
        "strategy": node.strategy_label,
        "line_tag": node.line_tag,
        "children": len(node.children),
    }


def cursor_state() -> Dict[str, Any]:
    cur = tree.current
    return {
        "fen": cur.position,
        "turn": "white" if cur.side_to_move == "w" else "black",
        "depth": tree.current_depth(),
        "eval": cur.evaluation,
        "path": [node_summary(n) for n in tree.current_path()],
        "children": [node_summary(c) for c in cur.children],
        "legal_moves": [m.notation for m in tree.get_legal_moves()],
        "size": tree.size,
    }


@app.get("/tree")
def get_tree():
    with _tree_lock:
        return cursor_state()


@app.get("/moves")
def get_moves():
    with _tree_lock:
        return {"moves": [asdict(m) for m in tree.get_legal_moves()]}


@app.post("/move")
def add_move(req: MoveRequest):
    with _tree_lock:
        node = tree.apply_move(req.move, req.strategy, req.line_tag)
        if node is None:
            raise HTTPException(status_code=400, detail=f"Illegal move: {req.move}")
        return node_summary(node)


@app.post("/navigate")
def navigate(req: NavigateRequest):
    with _tree_lock:
        if tree.navigate_to(req.fen) is None:
            raise HTTPException(status_code=400, detail=f"Position not in tree: {req.fen}")
        return cursor_state()


@app.post("/navigate/move")
def navigate_move(req: NavigateMoveRequest):
    with _tree_lock:
        if tree.navigate_by_move(req.move) is None:
            raise HTTPException(status_code=400, detail=f"No variation {req.move} here")
        return cursor_state()


@app.post("/back")
def go_back():
    with _tree_lock:
        if tree.go_back() is None:
            raise HTTPException(status_code=409, detail="Already at root")
        return cursor_state()


@app.post("/root")
def go_root():
    with _tree_lock:
        tree.go_to_root()
        return cursor_state()


@app.get("/children/grouped")
def grouped_children():
    with _tree_lock:
        groups = tree.children_grouped_by_strategy()
        return {k: [node_summary(n) for n in nodes] for k, nodes in groups.items()}


@app.get("/children/clusters")
def clustered_children(top_n: Optional[int] = None):
    with _tree_lock:
        clusters = tree.cluster_children(top_n)
        return [
            {
                "nodes": [node_summary(n) for n in c.nodes],
                "replies": sorted([san or "", label or ""] for san, label in c.signature),
            }
            for c in clusters
        ]


@app.get("/labels")
def labels():
    with _tree_lock:
        return {"strategies": tree.strategy_labels(), "line_tags": tree.line_tags()}


@app.get("/export")
def export_tree():
    with _tree_lock:
        return tree.export_tree()


@app.post("/import")
def import_tree(payload: Dict[str, Any]):
    with _tree_lock:
        try:
            tree.import_tree(payload)
        except TreeFormatError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return cursor_state()


@app.post("/import/lines")
def import_lines(req: LinesRequest):
    with _tree_lock:
        count = tree.import_lines(req.text, req.line_tag)
        return {"records": count, "size": tree.size}


@app.post("/evaluate")
async def evaluate_current():
    with _tree_lock:
        node = tree.current
    # evaluation writes only node.evaluation, no lock needed while awaiting
    score = await evaluator.evaluate(node)
    evaluated = await evaluator.evaluate_children(node)
    return {"fen": node.position, "eval": score, "children_evaluated": evaluated}


@app.post("/reset")
def reset_tree():
    with _tree_lock:
        tree.import_tree({"root": {"position": CONFIG.tree.start_fen}})
        return cursor_state()

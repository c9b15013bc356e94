# opening_tree/config.py
from dataclasses import dataclass, field
from typing import Dict, Optional
import logging
import os
import tomllib  # python >=3.11

import chess

logger = logging.getLogger(__name__)

# Defaults (centipawns), used by the static material evaluator
PIECE_VALUES = {
    "PAWN": 100,
    "KNIGHT": 320,
    "BISHOP": 330,
    "ROOK": 500,
    "QUEEN": 900,
    "KING": 0,
}

@dataclass
class TreeConfig:
    start_fen: str = chess.STARTING_FEN
    ungrouped_label: str = "Ungrouped"
    cluster_top_n: int = 3

@dataclass
class EvalConfig:
    depth: int = 15
    engine_path: Optional[str] = None  # UCI binary (stockfish); None means static eval
    threads: int = 1
    hash_mb: int = 64
    mate_score: float = 100.0  # pawns
    piece_values: Dict[str, int] = field(default_factory=lambda: PIECE_VALUES.copy())

@dataclass
class UIConfig:
    app_name: str = "Opening Tree Explorer"

@dataclass
class Config:
    tree: TreeConfig = field(default_factory=TreeConfig)
    eval: EvalConfig = field(default_factory=EvalConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    log_level: str = "INFO"
    export_indent: int = 2

    @staticmethod
    def load_from_toml(path: str = "config.toml") -> "Config":
        cfg = Config()
        if not os.path.exists(path):
            return cfg
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        for section in ("tree", "eval", "ui"):
            if section in raw:
                target = getattr(cfg, section)
                for k, v in raw[section].items():
                    if hasattr(target, k):
                        setattr(target, k, v)
        for k in ("log_level", "export_indent"):
            if k in raw:
                setattr(cfg, k, raw[k])
        return cfg


def configure_logging(level: str = "INFO"):
    """Set up root logging for the CLI and API entry points."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def apply_env_overrides(cfg: Config, env=None) -> Config:
    env = os.environ if env is None else env
    depth = env.get("TREE_EVAL_DEPTH")
    if depth:
        try:
            cfg.eval.depth = int(depth)
        except ValueError:
            logger.warning("Ignoring non-integer TREE_EVAL_DEPTH=%r", depth)
    if env.get("STOCKFISH_PATH"):
        cfg.eval.engine_path = env["STOCKFISH_PATH"]
    if env.get("TREE_LOG_LEVEL"):
        cfg.log_level = env["TREE_LOG_LEVEL"]
    return cfg


# single globally importable config instance
CONFIG = apply_env_overrides(Config.load_from_toml(os.environ.get("TREE_CONFIG_TOML", "config.toml")))

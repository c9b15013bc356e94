"""Interactive shell for building and browsing an opening tree."""

import argparse
import asyncio
import shlex
import sys
from typing import List, Optional

import chess.engine

from opening_tree.config import CONFIG, configure_logging
from opening_tree.core.evaluator import NodeEvaluator, make_evaluator
from opening_tree.core.node import PositionNode
from opening_tree.core.tree import TreeManager
from opening_tree.errors import TreeFormatError

HELP = """commands:
  moves                     legal moves here
  play <san> [strategy]     add a variation from here (cursor stays)
  line <san> <san> ...      add a sequence of moves from here
  goto <san>|<fen>          move to a child by SAN or to any indexed FEN
  back | root | path        navigate
  groups                    children grouped by strategy
  clusters [n]              children clustered by their top n replies
  labels                    all strategy labels and line tags
  eval                      evaluate this node and its children
  export <file> | import <file> | lines <file>
  help | quit"""


def format_node(node: PositionNode) -> str:
    text = node.label()
    text += f" ({node.evaluation:.2f})" if node.evaluation is not None else " (?)"
    if node.strategy_label:
        text += f" | {node.strategy_label}"
    if node.line_tag:
        text += f" [{node.line_tag}]"
    return text


class TreeShell:
    def __init__(self, tree: Optional[TreeManager] = None, evaluator: Optional[NodeEvaluator] = None):
        self.tree = tree or TreeManager()
        self.evaluator = evaluator
        # one loop for the session; a UCI engine process is bound to it
        self._loop = asyncio.new_event_loop()

    def execute(self, line: str) -> str:
        """Run one command and return the text to print."""
        try:
            args = shlex.split(line)
        except ValueError as e:
            return f"error: {e}"
        if not args:
            return ""
        cmd, rest = args[0].lower(), args[1:]
        handler = getattr(self, f"cmd_{cmd}", None)
        if handler is None:
            return f"unknown command: {cmd} (try 'help')"
        return handler(rest)

    def cmd_help(self, args: List[str]) -> str:
        return HELP

    def cmd_moves(self, args: List[str]) -> str:
        moves = self.tree.get_legal_moves()
        side = "White" if self.tree.current.side_to_move == "w" else "Black"
        return f"{side} to move, {len(moves)} legal: " + " ".join(m.notation for m in moves)

    def cmd_play(self, args: List[str]) -> str:
        if not args:
            return "usage: play <san> [strategy]"
        strategy = " ".join(args[1:]) or None
        node = self.tree.apply_move(args[0], strategy_label=strategy)
        if node is None:
            return f"illegal move: {args[0]}"
        return f"added {format_node(node)}"

    def cmd_line(self, args: List[str]) -> str:
        reached = self.tree.apply_moves(args)
        text = " ".join(n.label() for n in reached)
        if len(reached) < len(args):
            return f"added {text} (stopped at {args[len(reached)]})"
        return f"added {text}"

    def cmd_goto(self, args: List[str]) -> str:
        if not args:
            return "usage: goto <san>|<fen>"
        target = " ".join(args)
        if self.tree.navigate_by_move(target) is None and self.tree.navigate_to(target) is None:
            return f"no such variation: {target}"
        return self.cmd_path([])

    def cmd_back(self, args: List[str]) -> str:
        if self.tree.go_back() is None:
            return "already at root"
        return self.cmd_path([])

    def cmd_root(self, args: List[str]) -> str:
        self.tree.go_to_root()
        return self.cmd_path([])

    def cmd_path(self, args: List[str]) -> str:
        return " > ".join(format_node(n) for n in self.tree.current_path())

    def cmd_groups(self, args: List[str]) -> str:
        groups = self.tree.children_grouped_by_strategy()
        if not groups:
            return "no variations added yet"
        return "\n".join(
            f"{key}: " + ", ".join(format_node(n) for n in nodes)
            for key, nodes in groups.items()
        )

    def cmd_clusters(self, args: List[str]) -> str:
        top_n = int(args[0]) if args and args[0].isdigit() else None
        clusters = self.tree.cluster_children(top_n)
        if not clusters:
            return "no variations added yet"
        return "\n".join(
            f"#{i}: " + ", ".join(n.label() for n in c.nodes)
            for i, c in enumerate(clusters, 1)
        )

    def cmd_labels(self, args: List[str]) -> str:
        return (f"strategies: {', '.join(self.tree.strategy_labels()) or '-'}\n"
                f"line tags: {', '.join(self.tree.line_tags()) or '-'}")

    def cmd_eval(self, args: List[str]) -> str:
        if self.evaluator is None:
            self.evaluator = NodeEvaluator(make_evaluator(CONFIG))
        node = self.tree.current
        try:
            self._loop.run_until_complete(self._evaluate(node))
        except (chess.engine.EngineError, OSError, ValueError, TimeoutError) as e:
            return f"eval failed: {e}"
        return "\n".join([format_node(node)] + ["  " + format_node(c) for c in node.children])

    async def _evaluate(self, node: PositionNode):
        await self.evaluator.evaluate(node)
        await self.evaluator.evaluate_children(node)

    def cmd_export(self, args: List[str]) -> str:
        if not args:
            return self.tree.export_json()
        with open(args[0], "w", encoding="utf-8") as f:
            f.write(self.tree.export_json())
        return f"exported {self.tree.size} positions to {args[0]}"

    def cmd_import(self, args: List[str]) -> str:
        if not args:
            return "usage: import <file>"
        try:
            with open(args[0], encoding="utf-8") as f:
                self.tree.import_json(f.read())
        except (OSError, TreeFormatError) as e:
            return f"import failed: {e}"
        return f"imported {self.tree.size} positions"

    def cmd_lines(self, args: List[str]) -> str:
        if not args:
            return "usage: lines <file> [line tag]"
        try:
            with open(args[0], encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            return f"import failed: {e}"
        count = self.tree.import_lines(text, " ".join(args[1:]) or None)
        return f"processed {count} lines, tree has {self.tree.size} positions"

    def close(self):
        if self.evaluator is not None:
            self._loop.run_until_complete(self.evaluator.evaluator.close())
        self._loop.close()

    def run(self):
        print("Opening tree explorer. Type 'help' for commands.")
        try:
            while True:
                try:
                    command = input(f"{self.tree.current.label()}> ")
                except EOFError:
                    break
                if command.strip().lower() in ("quit", "exit"):
                    break
                out = self.execute(command)
                if out:
                    print(out)
        finally:
            self.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Explore an opening tree")
    parser.add_argument("--fen", default=CONFIG.tree.start_fen, help="starting position")
    parser.add_argument("--load", help="tree JSON exported earlier")
    parser.add_argument("--lines", help="line-notation file to import")
    parser.add_argument("--export", help="write the tree to this file and exit")
    args = parser.parse_args(argv)

    configure_logging(CONFIG.log_level)
    shell = TreeShell(TreeManager(args.fen))
    for cmd, path in (("import", args.load), ("lines", args.lines)):
        if path:
            print(shell.execute(f"{cmd} {shlex.quote(path)}"))
    if args.export:
        print(shell.execute(f"export {shlex.quote(args.export)}"))
        shell.close()
        return 0
    shell.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())

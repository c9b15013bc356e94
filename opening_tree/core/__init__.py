"""Core tree components: nodes, rules adapter, tree manager, grouping, evaluation."""

from .node import MoveInfo, PositionNode
from .tree import TreeManager
from .grouping import Cluster, cluster_by_top_replies
from .evaluator import MaterialEvaluator, NodeEvaluator, UciEvaluator, make_evaluator

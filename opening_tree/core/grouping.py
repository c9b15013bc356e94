"""Clustering of sibling nodes by their strongest replies."""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, Tuple

from .node import PositionNode

Reply = Tuple[Optional[str], Optional[str]]  # (SAN, strategy label)


@dataclass(eq=False)
class Cluster:
    nodes: List[PositionNode] = field(default_factory=list)
    signature: Set[Reply] = field(default_factory=set)


def reply_key(node: PositionNode) -> Reply:
    notation = node.incoming_move.notation if node.incoming_move else None
    return (notation, node.strategy_label)


def top_replies(node: PositionNode, top_n: int) -> List[PositionNode]:
    """Children by descending evaluation, unevaluated last. Stable."""
    ranked = sorted(
        node.children,
        key=lambda c: (c.evaluation is None, -(c.evaluation or 0.0)),
    )
    return ranked[:max(top_n, 0)]


def _single_reply(node: PositionNode) -> Optional[Reply]:
    return reply_key(node.children[0]) if len(node.children) == 1 else None


def cluster_by_top_replies(nodes: Sequence[PositionNode], top_n: int) -> List[Cluster]:
    """Greedy, order-dependent clustering of ``nodes``.

    Each node's signature is the (SAN, label) set of its ``top_n`` best
    replies. A node joins the first cluster whose accumulated signature
    overlaps its own, or one holding a single-reply member whose only
    reply matches the node's only reply. Otherwise it opens a new cluster.
    """
    clusters: List[Cluster] = []
    for node in nodes:
        sig = {reply_key(c) for c in top_replies(node, top_n)}
        single = _single_reply(node)
        target = None
        for cluster in clusters:
            if cluster.signature & sig:
                target = cluster
                break
            if single is not None and any(_single_reply(m) == single for m in cluster.nodes):
                target = cluster
                break
        if target is None:
            target = Cluster()
            clusters.append(target)
        target.nodes.append(node)
        target.signature |= sig
    return clusters

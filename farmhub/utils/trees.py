"""Nested reply/comment trees built from flat self-referencing rows."""

from collections import defaultdict
from typing import Callable


def build_tree(
    nodes,
    parent_attr: str,
    serialize: Callable[[object], dict],
    roots=None,
    children_key: str = "replies",
) -> list[dict]:
    """
    Arrange `nodes` (every row of one message/story) into nested dicts.

    `roots` limits the output to a page of top-level rows; their whole
    subtree is still taken from `nodes`. Children are ordered oldest first.
    Each dict gets `depth` (parent hops to the root) and `replies_count`
    (direct children).
    """
    by_parent = defaultdict(list)
    for node in nodes:
        by_parent[getattr(node, parent_attr)].append(node)
    for siblings in by_parent.values():
        siblings.sort(key=lambda n: n.id)

    def build(node, depth: int) -> dict:
        data = serialize(node)
        children = by_parent.get(node.id, [])
        data["depth"] = depth
        data["replies_count"] = len(children)
        data[children_key] = [build(child, depth + 1) for child in children]
        return data

    if roots is None:
        roots = by_parent.get(None, [])
    return [build(root, 0) for root in roots]

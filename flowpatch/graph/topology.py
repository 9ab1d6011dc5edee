from __future__ import annotations

import heapq
from collections.abc import Sequence
from dataclasses import dataclass

from flowpatch.graph.models import Edge, Node


@dataclass(slots=True)
class TopologicalPlan:
    order: list[str]
    reachable: set[str]
    has_cycle: bool


def build_adjacency(nodes: Sequence[Node], edges: Sequence[Edge]) -> dict[str, list[str]]:
    adjacency: dict[str, list[str]] = {node.id: [] for node in nodes}
    for edge in edges:
        if edge.source in adjacency and edge.target in adjacency:
            if edge.target not in adjacency[edge.source]:
                adjacency[edge.source].append(edge.target)
    return adjacency


def reachable_from(start: str, adjacency: dict[str, list[str]]) -> set[str]:
    reachable: set[str] = set()
    stack = [start]
    while stack:
        node_id = stack.pop()
        if node_id in reachable or node_id not in adjacency:
            continue
        reachable.add(node_id)
        for target in adjacency.get(node_id, []):
            if target not in reachable:
                stack.append(target)
    return reachable


def has_cycle(adjacency: dict[str, list[str]], start: str | None = None) -> bool:
    visited: set[str] = set()
    active: set[str] = set()

    roots = [start] if start is not None else list(adjacency)
    for root in roots:
        if root not in adjacency or root in visited:
            continue
        visited.add(root)
        active.add(root)
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node_id, targets = stack[-1]
            target = next(targets, None)
            if target is None:
                active.discard(node_id)
                stack.pop()
                continue
            if target in active:
                return True
            if target in visited or target not in adjacency:
                continue
            visited.add(target)
            active.add(target)
            stack.append((target, iter(adjacency[target])))
    return False


def topological_order(start: str, nodes: Sequence[Node], edges: Sequence[Edge]) -> TopologicalPlan:
    """Kahn's algorithm over the subgraph reachable from ``start``.

    Ready nodes are released in their original insertion order so the plan is
    deterministic for a given graph snapshot.
    """
    adjacency = build_adjacency(nodes, edges)
    reachable = reachable_from(start, adjacency)
    rank = {node.id: index for index, node in enumerate(nodes)}

    indegree = {node_id: 0 for node_id in reachable}
    for source in reachable:
        for target in adjacency[source]:
            if target in reachable:
                indegree[target] += 1

    ready = [(rank[node_id], node_id) for node_id, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, node_id = heapq.heappop(ready)
        order.append(node_id)
        for target in adjacency[node_id]:
            if target not in indegree:
                continue
            indegree[target] -= 1
            if indegree[target] == 0:
                heapq.heappush(ready, (rank[target], target))

    return TopologicalPlan(order=order, reachable=reachable, has_cycle=len(order) < len(reachable))


def ordered_steps(nodes: Sequence[Node], edges: Sequence[Edge], start: str | None) -> list[str]:
    """Non-trigger node ids in depth-first order from ``start``, then the rest."""
    if start is None:
        return [node.id for node in nodes if node.role != "TRIGGER"]

    adjacency = build_adjacency(nodes, edges)
    roles = {node.id: node.role for node in nodes}
    visited: set[str] = set()
    result: list[str] = []

    stack = [start]
    while stack:
        node_id = stack.pop()
        if node_id in visited:
            continue
        visited.add(node_id)
        if roles.get(node_id) != "TRIGGER":
            result.append(node_id)
        # Reversed so the first outgoing edge is visited first.
        stack.extend(reversed(adjacency.get(node_id, [])))

    for node in nodes:
        if node.id not in visited and node.role != "TRIGGER":
            result.append(node.id)
    return result

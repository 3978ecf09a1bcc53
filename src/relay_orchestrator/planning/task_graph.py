"""Arena task graph keyed by stable node id with deterministic traversal."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from relay_orchestrator.domain.models import Role, TaskNode, TaskStatus

# Missing order keys sort after every explicit key.
_UNORDERED = 2**32

_ID_SUFFIXES: dict[Role, str] = {
    Role.IMPLEMENTOR: "impl",
    Role.AUDITOR: "audit",
    Role.TEST_WRITER: "tests",
    Role.TEST_RUNNER: "test-run",
    Role.FINAL_AUDIT: "final-audit",
    Role.TASK: "task",
}


class TaskGraph:
    """Parent/child forest of ``TaskNode`` values.

    Nodes are stored once and addressed by id. Sibling order follows the
    ``order`` key with ties broken by insertion order, which for a loaded graph
    is the declaration order of the source records.
    """

    __slots__ = ("_nodes", "_sequence", "_children")

    def __init__(self, nodes: Iterable[TaskNode] | None = None) -> None:
        self._nodes: dict[str, TaskNode] = {}
        self._sequence: dict[str, int] = {}
        self._children: dict[str | None, list[str]] = {None: []}

        if nodes is not None:
            for node in nodes:
                self.add_node(node)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[TaskNode]:
        return self.walk()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TaskGraph):
            return NotImplemented
        return list(self.walk()) == list(other.walk())

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"TaskGraph(nodes={len(self._nodes)}, roots={len(self._children[None])})"

    def add_node(self, node: TaskNode) -> None:
        """Insert ``node``. The parent does not need to exist yet."""
        if not node.id:
            raise ValueError("node id must be a non-empty string")
        if node.id in self._nodes:
            raise ValueError(f"duplicate node id: {node.id!r}")

        self._nodes[node.id] = node
        self._sequence[node.id] = len(self._sequence)
        self._children.setdefault(node.parent_id, []).append(node.id)
        self._children.setdefault(node.id, [])

    def add_child(self, parent_id: str, *, role: Role, title: str, details: str) -> TaskNode:
        """Synthesize a pending child of ``parent_id`` ordered after its siblings."""
        self._assert_node_exists(parent_id)
        siblings = self.children(parent_id)

        if not siblings:
            order: int | None = 0
        elif all(sibling.order is not None for sibling in siblings):
            order = max(sibling.order for sibling in siblings if sibling.order is not None) + 1
        else:
            order = None

        node = TaskNode(
            id=self._derive_id(parent_id, role),
            title=title,
            details=details,
            role=role,
            status=TaskStatus.PENDING,
            parent_id=parent_id,
            order=order,
        )
        self.add_node(node)
        return node

    def get(self, node_id: str) -> TaskNode:
        self._assert_node_exists(node_id)
        return self._nodes[node_id]

    def roots(self) -> tuple[TaskNode, ...]:
        """Top-level nodes in canonical order."""
        return self._ordered(self._children[None])

    def children(self, node_id: str) -> tuple[TaskNode, ...]:
        """Direct children of ``node_id`` in canonical order."""
        self._assert_node_exists(node_id)
        return self._ordered(self._children[node_id])

    def children_with_role(self, node_id: str, role: Role) -> tuple[TaskNode, ...]:
        return tuple(child for child in self.children(node_id) if child.role is role)

    def walk(self) -> Iterator[TaskNode]:
        """Pre-order traversal: roots in order, each followed by its subtree."""
        stack: list[TaskNode] = list(reversed(self.roots()))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(self._ordered(self._children[node.id])))

    def top_level_of(self, node_id: str) -> TaskNode:
        node = self.get(node_id)
        seen: set[str] = {node.id}
        while node.parent_id is not None:
            node = self.get(node.parent_id)
            if node.id in seen:
                raise ValueError(f"parent chain of {node_id!r} is cyclic")
            seen.add(node.id)
        return node

    def set_status(self, node_id: str, status: TaskStatus) -> None:
        self.get(node_id).status = status

    def status_of(self, node_id: str) -> TaskStatus:
        return self.get(node_id).status

    def subtree_done(self, node_id: str) -> bool:
        """True when ``node_id`` and every descendant are ``done``."""
        stack = [self.get(node_id)]
        while stack:
            node = stack.pop()
            if node.status is not TaskStatus.DONE:
                return False
            stack.extend(self._nodes[child_id] for child_id in self._children[node.id])
        return True

    def render(self) -> str:
        """Compact indented status tree."""
        if not self._nodes:
            return "(no tasks)"
        lines: list[str] = []
        for root in self.roots():
            self._render_into(root, 0, lines)
        return "\n".join(lines)

    def _render_into(self, node: TaskNode, depth: int, lines: list[str]) -> None:
        lines.append(f"{'  ' * depth}- {node.status.marker} {node.role.label}: {node.title}")
        for child in self._ordered(self._children[node.id]):
            self._render_into(child, depth + 1, lines)

    def _ordered(self, node_ids: Iterable[str]) -> tuple[TaskNode, ...]:
        ordered = sorted(node_ids, key=self._sort_key)
        return tuple(self._nodes[node_id] for node_id in ordered)

    def _sort_key(self, node_id: str) -> tuple[int, int]:
        order = self._nodes[node_id].order
        return (_UNORDERED if order is None else order, self._sequence[node_id])

    def _derive_id(self, parent_id: str, role: Role) -> str:
        base = f"{parent_id}.{_ID_SUFFIXES[role]}"
        candidate = base
        counter = 2
        while candidate in self._nodes:
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate

    def _assert_node_exists(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise KeyError(f"Unknown node: {node_id!r}")


__all__ = ["TaskGraph"]

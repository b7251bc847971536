"""Parent/child relationships between collections."""

from typing import Iterable


class InheritanceMap:
    """Directed graph of collection inheritance, keyed by collection name."""

    def __init__(self) -> None:
        self._parents: dict[str, list[str]] = {}

    def set_inherits(self, name: str, inherits: str | Iterable[str]) -> None:
        """Record that ``name`` inherits from each of ``inherits``, in order."""
        parents = [inherits] if isinstance(inherits, str) else list(inherits)
        self._parents[name] = parents
        for parent in parents:
            self._parents.setdefault(parent, [])

    def remove_node(self, name: str) -> None:
        self._parents.pop(name, None)
        for parents in self._parents.values():
            if name in parents:
                parents.remove(name)

    def is_parent_node(self, name: str) -> bool:
        return any(name in parents for parents in self._parents.values())

    def get_children(self, name: str, deep: bool = False) -> list[str]:
        """Direct children of ``name``; with ``deep`` every descendant."""
        children = [child for child, parents in self._parents.items() if name in parents]
        if not deep:
            return children

        result: list[str] = []
        pending = list(children)
        while pending:
            child = pending.pop(0)
            if child in result:
                continue
            result.append(child)
            pending.extend(self.get_children(child))
        return result

    def get_parents(self, name: str, deep: bool = False) -> list[str]:
        """Direct parents of ``name``; with ``deep`` every ancestor."""
        parents = list(self._parents.get(name, []))
        if not deep:
            return parents

        result: list[str] = []
        pending = list(parents)
        while pending:
            parent = pending.pop(0)
            if parent in result:
                continue
            result.append(parent)
            pending.extend(self._parents.get(parent, []))
        return result

    def clear(self) -> None:
        self._parents.clear()

"""Disjoint-set forest over record identifiers."""

from __future__ import annotations

from collections.abc import Iterable


class UnionFind:
    """Union-Find with path halving and union by size.

    Attributes
    ----------
    parent : dict[str, str]
        Parent pointer of every known identifier.
    size : dict[str, int]
        Component size, meaningful for roots only.
    """

    def __init__(self, elements: Iterable[str] = ()) -> None:
        self.parent: dict[str, str] = {}
        self.size: dict[str, int] = {}
        for element in elements:
            self.add(element)

    def __contains__(self, element: object) -> bool:
        return element in self.parent

    def add(self, element: str) -> None:
        """Register *element* as a singleton if unknown."""
        if element not in self.parent:
            self.parent[element] = element
            self.size[element] = 1

    def find(self, element: str) -> str:
        """Root of *element*'s component, registering it if unknown."""
        self.add(element)
        while self.parent[element] != element:
            self.parent[element] = self.parent[self.parent[element]]
            element = self.parent[element]
        return element

    def union(self, a: str, b: str) -> bool:
        """Merge the components of *a* and *b*.

        Returns
        -------
        bool
            False when both were already connected.
        """
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return False
        if self.size[root_a] < self.size[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        self.size[root_a] += self.size[root_b]
        return True

    def components(self) -> list[list[str]]:
        """Every component as a sorted list, ordered by smallest member."""
        groups: dict[str, list[str]] = {}
        for element in self.parent:
            groups.setdefault(self.find(element), []).append(element)
        return sorted((sorted(members) for members in groups.values()), key=lambda m: m[0])

"""
Append-only list that hands out a stable index per distinct value.

Used to deduplicate vertices: inserting a value already present returns the
index it was first stored at instead of appending it again.
"""
from typing import Dict, Generic, Hashable, Iterator, List, Optional, TypeVar

T = TypeVar("T", bound=Hashable)


class UniqueList(Generic[T]):
    """Ordered collection of unique values with O(1) index lookup."""

    def __init__(self, prototype: Optional["UniqueList[T]"] = None):
        if prototype is None:
            self._indices: Dict[T, int] = {}
            self._values: List[T] = []
        else:
            self._indices = dict(prototype._indices)
            self._values = list(prototype._values)

    def add_or_find(self, value: T) -> int:
        """Return the index of *value*, appending it first if unseen."""
        index = self._indices.get(value)
        if index is None:
            index = len(self._values)
            self._values.append(value)
            self._indices[value] = index
        return index

    def index_of(self, value: T) -> int:
        """Index of a previously inserted value. Raises KeyError if absent."""
        return self._indices[value]

    def copy(self) -> "UniqueList[T]":
        return UniqueList(self)

    def __len__(self) -> int:
        return len(self._values)

    def __getitem__(self, index: int) -> T:
        return self._values[index]

    def __iter__(self) -> Iterator[T]:
        return iter(self._values)

    def __contains__(self, value) -> bool:
        return value in self._indices

    def __repr__(self) -> str:
        return f"UniqueList({self._values!r})"

"""
Render material handles.

A Material is an opaque token: two handles are the same material only if
they are the same object, regardless of their names or properties. Sub-mesh
grouping in the batcher relies on this.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(eq=False)
class Material:
    """An identity-keyed material reference."""

    name: str = "default"
    properties: Dict[str, Any] = field(default_factory=dict)
    source: Optional[Any] = None  # wrapped renderer/loader material, if any

    def __repr__(self) -> str:
        return f"Material(name={self.name!r}, id=0x{id(self):x})"


# Used by scene adapters when a geometry carries no material of its own.
DEFAULT_MATERIAL = Material(name="default")

"""Central schema registry with version metadata."""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class SchemaDescriptor:
    """Describes a JSON Schema document used by mergemaster."""

    name: str
    version: str
    description: str


_REGISTRY: dict[str, SchemaDescriptor] = {
    "state": SchemaDescriptor(
        name="state",
        version="1",
        description="State document persisted in the integration branch status commit.",
    ),
    "summary": SchemaDescriptor(
        name="summary",
        version="1",
        description="Run summary written after update / tag runs.",
    ),
}


def get_schema_descriptor(name: str) -> SchemaDescriptor:
    """Return a copy of a schema descriptor by name."""
    try:
        descriptor = _REGISTRY[name]
    except KeyError as exc:
        raise KeyError(f"Unknown schema '{name}'") from exc
    return replace(descriptor)


__all__ = ["SchemaDescriptor", "get_schema_descriptor"]

from types import MappingProxyType
from typing import Any, Mapping, Optional

from stackrecon.engine.errors import InvalidTemplateError, MappingKeyNotFoundError


def freeze_mappings(mappings: Optional[dict]) -> Mapping[str, Mapping[str, Mapping[str, Any]]]:
    """Return a read-only two-level view of the ``Mappings`` section"""
    frozen = {}
    for name, table in (mappings or {}).items():
        if not isinstance(table, dict):
            raise InvalidTemplateError(f"Mapping {name} must be an object", operation="parse")
        frozen[name] = MappingProxyType(
            {
                key: MappingProxyType(dict(entry)) if isinstance(entry, dict) else entry
                for key, entry in table.items()
            }
        )
    return MappingProxyType(frozen)


def find_in_map(
    mappings: Mapping,
    mapping_name: str,
    top_level_key: str,
    second_level_key: str,
    logical_resource_id: Optional[str] = None,
) -> Any:
    mapping = mappings.get(mapping_name)
    if mapping is None:
        raise InvalidTemplateError(
            f"Mapping {mapping_name} does not exist",
            logical_resource_id=logical_resource_id,
            operation="find_in_map",
        )

    entry = mapping.get(str(top_level_key))
    if entry is None:
        raise MappingKeyNotFoundError(
            f"Mapping {mapping_name} has no entry for key {top_level_key}",
            mapping_name=mapping_name,
            key=str(top_level_key),
            logical_resource_id=logical_resource_id,
        )

    if not hasattr(entry, "get") or entry.get(str(second_level_key)) is None:
        raise MappingKeyNotFoundError(
            f"Mapping {mapping_name} has no key {second_level_key} under {top_level_key}",
            mapping_name=mapping_name,
            key=str(second_level_key),
            logical_resource_id=logical_resource_id,
        )

    return entry[str(second_level_key)]

"""
Attribute definition index and the update-record encoder.

Attribute definitions are server-side schema entries ``{id, name, type,
options: [{guid, name}, ...]}``. The encoder turns caller input such as
``{"Business Risk": ["High"], "Development Phase": ["Active"]}`` into the
records accepted by a bulk attribute update:

    {"attributeDefinitionId": 5, "values": [{"guid": "..."}], "value": None}
"""
from __future__ import annotations

import copy
import logging
from datetime import date
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .errors import InvalidArgumentError
from .json_document import JSONList, JSONMap, build_dual_index, coerce, to_json_value

logger = logging.getLogger(__name__)

OPTIONS_INDEX_KEY = "optionsByNameAndGuid"
ENUMERATED_TYPES = ("SINGLE", "MULTIPLE")
DATE_FORMAT = "%Y-%m-%d"


def index_attribute_definitions(definitions: JSONList) -> JSONMap:
    """
    Index attribute definitions by both name and id. Definitions that carry
    options get an ``optionsByNameAndGuid`` entry indexing the options by
    both name and guid. The input list and its elements are left untouched.
    """
    definitions = to_json_value(copy.deepcopy(JSONList(definitions)))
    for definition in definitions.as_value_type(JSONMap):
        options = definition.get_path("options", JSONList)
        if options:
            definition[OPTIONS_INDEX_KEY] = build_dual_index(options, "name", "guid")
    return build_dual_index(definitions, "name", "id")


def _as_values(values: Any) -> List[Any]:
    if values is None:
        return []
    if isinstance(values, (str, bytes, date)) or not isinstance(values, Iterable):
        return [values]
    return list(values)


class AttributeUpdateEncoder:
    """Build update records from ``{attribute name or id: values}``."""

    def __init__(self, definitions_by_name_or_id: JSONMap) -> None:
        self.definitions = definitions_by_name_or_id

    @classmethod
    def from_definitions(cls, definitions: JSONList) -> "AttributeUpdateEncoder":
        return cls(index_attribute_definitions(definitions))

    def resolve_definition(self, name_or_id: Any) -> JSONMap:
        definition = self.definitions.get(coerce(name_or_id, str))
        if definition is None:
            raise InvalidArgumentError(f"Attribute name or id {name_or_id} does not exist")
        return coerce(definition, JSONMap)

    def encode(self, name_or_id: Any, values: Any) -> JSONMap:
        values = _as_values(values)
        definition = self.resolve_definition(name_or_id)
        attr_type = definition.get_path("type", str)
        record = JSONMap(attributeDefinitionId=definition.get("id"))
        if attr_type in ENUMERATED_TYPES:
            if attr_type == "SINGLE" and len(values) > 1:
                raise InvalidArgumentError(
                    f"Attribute {name_or_id} can only contain a single value, got {len(values)}: {values}")
            record["values"] = self._option_guids(definition, name_or_id, values)
            record["value"] = None
        else:
            record["values"] = None
            record["value"] = self._scalar_value(values)
        return record

    def encode_all(self, attribute_values: Mapping[Any, Any]) -> JSONList:
        """One record per input key, in input order."""
        data = JSONList(self.encode(key, values) for key, values in attribute_values.items())
        logger.debug(f"Encoded {len(data)} attribute update records")
        return data

    @staticmethod
    def _option_guids(definition: JSONMap, name_or_id: Any, values: Sequence[Any]) -> JSONList:
        options = definition.get_path(OPTIONS_INDEX_KEY, JSONMap)
        if options is None:
            raw = definition.get_path("options", JSONList)
            options = build_dual_index(raw, "name", "guid") if raw else JSONMap()
        result = JSONList()
        for option_name_or_guid in values:
            option = options.get(coerce(option_name_or_guid, str))
            if option is None:
                raise InvalidArgumentError(f"Invalid option {option_name_or_guid} for attribute {name_or_id}")
            result.append(JSONMap(guid=coerce(option, JSONMap).get_path("guid", str)))
        return result

    @staticmethod
    def _scalar_value(values: Sequence[Any]) -> Optional[Any]:
        if not values:
            return None
        value = values[0]
        if isinstance(value, date):
            return value.strftime(DATE_FORMAT)
        return value

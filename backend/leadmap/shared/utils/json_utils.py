"""
JSON Utility Functions
The scraping worker double-encodes several fields (the batch itself,
opening hours, the info blob). These helpers accept either form.
"""
import json
from typing import Any, Union, List, Dict


def safe_json_parse(
    data: Any,
    default: Any = None
) -> Union[Dict, List, Any]:
    """
    Parse a value that may be a JSON string or an already-decoded object.

    Examples:
        >>> safe_json_parse('[{"Titre": "Chez Paul"}]')
        [{'Titre': 'Chez Paul'}]

        >>> safe_json_parse(["Lundi: 9h-18h"])
        ['Lundi: 9h-18h']

        >>> safe_json_parse('not json', default={})
        {}
    """
    if data is None:
        return default

    if isinstance(data, (dict, list)):
        return data

    if isinstance(data, str):
        if not data.strip():
            return default
        try:
            return json.loads(data)
        except (json.JSONDecodeError, ValueError):
            return default

    return default


def strict_json_list(data: Any) -> List[Any]:
    """
    Decode a value that must be a JSON array.

    Raises:
        ValueError: when the value is not a list nor a JSON string encoding one
    """
    if isinstance(data, list):
        return data
    if not isinstance(data, str):
        raise ValueError(f"Expected a JSON array, got {type(data).__name__}")
    decoded = json.loads(data)  # JSONDecodeError is a ValueError
    if not isinstance(decoded, list):
        raise ValueError(f"Expected a JSON array, got {type(decoded).__name__}")
    return decoded

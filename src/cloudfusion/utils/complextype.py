"""Flatten nested parameter structures into AWS query keys.

AWS query APIs express nested structures as dotted keys with 1-based
list indexes, for example ``Filter.1.Name`` and ``Filter.1.Value.1``.
:class:`ComplexType` builds such a flat map from a Python mapping, a
JSON document or a YAML document.
"""

import json as _json
from typing import Any, Dict, Optional

import yaml


class ComplexType:
    """Build flattened option groups for query requests.

    Example::

        >>> ComplexType.map({"Filter": [{"Name": "tag", "Value": ["a"]}]})
        {'Filter.1.Name': 'tag', 'Filter.1.Value.1': 'a'}
    """

    @classmethod
    def json(cls, text: str, default_key: str = "") -> Dict[str, Any]:
        """Flatten a JSON document.

        :param text: JSON text
        :type text: str
        :param default_key: Prefix applied to every generated key
        :type default_key: str
        :return: Flattened option group
        :rtype: Dict[str, Any]
        """
        return cls.option_group(_json.loads(text), default_key)

    @classmethod
    def yaml(cls, text: str, default_key: str = "") -> Dict[str, Any]:
        """Flatten a YAML document.

        :param text: YAML text
        :type text: str
        :param default_key: Prefix applied to every generated key
        :type default_key: str
        :return: Flattened option group
        :rtype: Dict[str, Any]
        """
        return cls.option_group(yaml.safe_load(text), default_key)

    @classmethod
    def map(cls, data: Any, default_key: str = "") -> Dict[str, Any]:
        """Flatten a mapping or sequence.

        :param data: Nested mapping, list or scalar
        :type data: Any
        :param default_key: Prefix applied to every generated key
        :type default_key: str
        :return: Flattened option group
        :rtype: Dict[str, Any]
        """
        return cls.option_group(data, default_key)

    @classmethod
    def option_group(
        cls, data: Any, key: str = "", out: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Recursively flatten ``data`` into ``out``.

        List positions become 1-based indexes. A scalar is stored under
        ``key`` unchanged.

        :param data: Value to flatten
        :type data: Any
        :param key: Key prefix for this level
        :type key: str
        :param out: Accumulator, created when omitted
        :type out: Optional[Dict[str, Any]]
        :return: The accumulator
        :rtype: Dict[str, Any]
        """
        if out is None:
            out = {}

        if isinstance(data, dict):
            items = data.items()
        elif isinstance(data, (list, tuple)):
            items = ((index + 1, value) for index, value in enumerate(data))
        else:
            out[key] = data
            return out

        for k, v in items:
            child_key = str(k) if key == "" else f"{key}.{k}"
            if isinstance(v, (dict, list, tuple)):
                cls.option_group(v, child_key, out)
            else:
                out[child_key] = v
        return out

# tor-history - a historical record of the Tor relay roster
# Copyright (C) 2021 tor-history authors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
# =============================================================================
"""Functionality for working with objects parsed from YAML."""
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

import yaml

# Represents a dictionary parsed from YAML, where values in the dictionary can
# be strings, numbers, booleans or nested dictionaries.
YAMLDictType = Dict[str, Any]

T = TypeVar("T")


class YAMLDict:
    """Wraps a dict parsed from YAML and provides type safety when accessing
    items within the dict."""

    def __init__(self, raw_yaml: YAMLDictType):
        self.raw_yaml = raw_yaml

    @classmethod
    def from_path(cls, yaml_path: str) -> "YAMLDict":
        with open(yaml_path, encoding="utf-8") as yaml_file:
            return cls._from_loaded(yaml.safe_load(yaml_file), yaml_path)

    @classmethod
    def from_string(cls, yaml_string: str) -> "YAMLDict":
        return cls._from_loaded(yaml.safe_load(yaml_string), "<string>")

    @classmethod
    def _from_loaded(cls, loaded_raw_yaml: Any, source: str) -> "YAMLDict":
        # An empty document is an empty configuration.
        if loaded_raw_yaml is None:
            return YAMLDict({})
        if not isinstance(loaded_raw_yaml, dict):
            raise ValueError(
                f"Expected YAML to contain a top-level dictionary, but "
                f"received: {type(loaded_raw_yaml)} at [{source}]."
            )
        return YAMLDict(loaded_raw_yaml)

    @classmethod
    def _assert_type(
        cls, field: str, value: Any, value_type: Union[Type[T], Tuple[Type, ...]]
    ) -> T:
        if value is None or not isinstance(value, value_type):
            raise ValueError(
                f"The field [{field}] must be of type [{value_type}]. Invalid "
                f"[{field}] value, expected type [{value_type}] but received: "
                f"{type(value)}"
            )
        return value

    def pop_optional(
        self, field: str, value_type: Union[Type[T], Tuple[Type, ...]]
    ) -> Optional[T]:
        """Returns the object at the given key |field| after popping it from the
        YAMLDict. Will return None if the field does not exist or if the value at
        that field is None. Throws if the value is nonnull but the type is not the
        expected |value_type|.
        """
        value = self.raw_yaml.pop(field, None)
        if value is None:
            return None
        return self._assert_type(field, value, value_type)

    def pop(self, field: str, value_type: Union[Type[T], Tuple[Type, ...]]) -> T:
        """Returns the object at the given key |field| after popping it from the
        YAMLDict. Throws if the field does not exist, if the value at that field is
        None, or if the type is not the expected |value_type|.
        """
        try:
            value = self.raw_yaml.pop(field)
        except KeyError as e:
            raise KeyError(f"Expected nonnull [{field}] in input: {self.keys()}") from e
        return self._assert_type(field, value, value_type)

    def pop_dict_optional(self, field: str) -> Optional["YAMLDict"]:
        """Returns the dictionary at the given key |field| after popping it from
        the YAMLDict, or None if the field does not exist or is None. Throws if the
        value is nonnull but is not a dictionary.
        """
        raw_yaml = self.pop_optional(field, dict)
        if raw_yaml is None:
            return None
        return YAMLDict(raw_yaml)

    def __len__(self) -> int:
        return len(self.raw_yaml)

    def keys(self) -> List[str]:
        """Returns a list of keys in this YAMLDict."""
        return list(self.raw_yaml.keys())

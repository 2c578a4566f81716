# ch347link
# Copyright (c) 2018-2020 Arm Limited
# Copyright (c) 2025 ch347link authors
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
from typing import (Any, Dict, List, Mapping, Optional)

from .options import OPTIONS_INFO

LOG = logging.getLogger(__name__)

class OptionsManager:
    """! @brief Layered option storage for a session.

    Each layer is a dictionary of option values. Lookups walk the layers from highest to lowest
    priority and fall back to the default in OPTIONS_INFO when no layer holds the option. Layers
    are added by the session in the order of their source: keyword arguments, the options dict,
    the config file, and finally the caller's option defaults.
    """

    def __init__(self) -> None:
        self._layers: List[Dict[str, Any]] = []

    @property
    def layer_count(self) -> int:
        return len(self._layers)

    def add_front(self, new_options: Optional[Mapping[str, Any]]) -> None:
        """! @brief Add a new highest priority layer of option values."""
        if new_options is None:
            return
        self._layers.insert(0, self._convert_options(new_options))

    def add_back(self, new_options: Optional[Mapping[str, Any]]) -> None:
        """! @brief Add a new lowest priority layer of option values."""
        if new_options is None:
            return
        self._layers.append(self._convert_options(new_options))

    def _convert_options(self, new_options: Mapping[str, Any]) -> Dict[str, Any]:
        """! @brief Normalize a dictionary of options before it becomes a layer.

        Entries with a value of None are dropped, double underscores in names become dots so that
        options can be passed as keyword arguments (`usb__timeout=1.0`), and names are lowercased.
        Values whose type does not match the option definition are kept but logged.
        """
        output = {}
        for name, value in new_options.items():
            if value is None:
                continue
            name = name.replace("__", ".").lower()
            info = OPTIONS_INFO.get(name)
            if info is None:
                LOG.debug("unknown option '%s'", name)
            elif not isinstance(value, info.type):
                LOG.warning("option '%s' has value %r that is not of type %s", name, value, info.type)
            output[name] = value
        return output

    def is_set(self, key: str) -> bool:
        """! @brief Whether any layer has a value for the option, even one equal to the default."""
        return any(key in layer for layer in self._layers)

    def get_default(self, key: str) -> Any:
        """! @brief Return the default value for the specified option."""
        info = OPTIONS_INFO.get(key)
        return info.default if info is not None else None

    def get(self, key: str) -> Any:
        """! @brief Return the highest priority value for the option, or its default."""
        for layer in self._layers:
            if key in layer:
                return layer[key]
        return self.get_default(key)

    def set(self, key: str, value: Any) -> None:
        """! @brief Set an option in the current highest priority layer."""
        self.update({key: value})

    def update(self, new_options: Mapping[str, Any]) -> None:
        """! @brief Set multiple options in the current highest priority layer.

        A layer is created if there is none yet.
        """
        if not self._layers:
            self._layers.append({})
        self._layers[0].update(self._convert_options(new_options))

    def __contains__(self, key: str) -> bool:
        """! @brief Returns whether the named option has a non-default value."""
        return self.is_set(key)

    def __getitem__(self, key: str) -> Any:
        return self.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

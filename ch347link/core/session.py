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

from __future__ import annotations

import logging
import logging.config
import os
from typing import (Any, Dict, List, Mapping, Optional, TYPE_CHECKING)

import yaml
from typing_extensions import Self

from . import exceptions
from .options_manager import OptionsManager

if TYPE_CHECKING:
    from types import TracebackType
    from ..probe.jtag import JTAGEngine
    from ..probe.swd import SWDEngine
    from ..probe.usb import CH347USBInterface

LOG = logging.getLogger(__name__)

## @brief Set of default config filenames to search for.
_CONFIG_FILE_NAMES = [
        "ch347link.yaml",
        "ch347link.yml",
        ".ch347link.yaml",
        ".ch347link.yml",
    ]

class Session:
    """! @brief Owns one CH347 bridge interface and the options that configure it.

    The session is the root of the object graph. The JTAG and SWD engines are created on first
    use and share the session's interface, so only one of them should be driving the bridge at a
    time.

    Precedence for session options:

    1. Keyword arguments to constructor.
    2. _options_ parameter to constructor.
    3. Probe-specific options from a config file.
    4. General options from a config file.
    5. _option_defaults_ parameter to constructor.

    A Session instance can be used as a context manager. The session will, by default, be
    automatically opened when the context is entered, and closed when the **with** block is
    exited. If opening fails inside a **with** statement the session is closed again before the
    exception propagates.
    """

    @classmethod
    def with_first_device(cls, **kwargs) -> Self:
        """! @brief Create a session for the first attached bridge.

        If the `probe_id` option is passed, either directly or within an `options` dict, only a
        bridge whose unique ID contains it (case insensitive) is considered.

        @exception ProbeError No matching bridge is attached.
        """
        from ..probe.usb import CH347USBInterface

        probe_id = kwargs.get('probe_id') or (kwargs.get('options') or {}).get('probe_id')
        devices = CH347USBInterface.get_all_connected_devices()
        if probe_id is not None:
            devices = [d for d in devices if str(probe_id).lower() in d.unique_id.lower()]
        if not devices:
            if probe_id is not None:
                raise exceptions.ProbeError(f"no CH347 bridge with ID matching '{probe_id}' found")
            raise exceptions.ProbeError("no CH347 bridge found")
        if len(devices) > 1:
            LOG.info("%d CH347 bridges found, using %s", len(devices), devices[0].unique_id)
        return cls(devices[0], **kwargs)

    def __init__(
            self,
            interface: Optional[CH347USBInterface],
            auto_open: bool = True,
            options: Optional[Mapping[str, Any]] = None,
            option_defaults: Optional[Mapping[str, Any]] = None,
            **kwargs
            ) -> None:
        """! @brief Session constructor.

        Passing an _interface_ that is None is allowed, creating a session that only holds
        options. Such a session cannot be opened.

        @param self
        @param interface The bridge interface. May be None.
        @param auto_open Whether to automatically open the session when used as a context manager.
        @param options Optional session options dictionary.
        @param option_defaults Optional dictionary of lowest priority option values.
        @param kwargs Session options passed as keyword arguments.
        """
        self._interface = interface
        self._auto_open = auto_open
        self._closed = True
        self._options = OptionsManager()
        self._jtag: Optional[JTAGEngine] = None
        self._swd: Optional[SWDEngine] = None

        self._options.add_front(kwargs)
        self._options.add_back(options)

        if self.options.get('project_dir') is None:
            self._project_dir: str = os.getcwd()
        else:
            self._project_dir = os.path.abspath(os.path.expanduser(self.options.get('project_dir')))
        LOG.debug("Project directory: %s", self.project_dir)

        config = self._get_config()
        probes_config = config.pop('probes', None)

        # Config file options for this bridge have priority over the general ones.
        if (interface is not None) and (probes_config is not None):
            did_match_probe = False
            for uid, settings in probes_config.items():
                if str(uid).lower() in interface.unique_id.lower():
                    if did_match_probe:
                        LOG.warning("Multiple probe config options match probe ID %s", interface.unique_id)
                        break
                    LOG.info("Using config options for probe %s", interface.unique_id)
                    self._options.add_back(settings)
                    did_match_probe = True

        self._options.add_back(config)
        self._options.add_back(option_defaults)

        self._configure_logging()

    def _get_config(self) -> Dict[str, Any]:
        if self.options.get('no_config'):
            return {}
        config_path = self.find_user_file('config_file', _CONFIG_FILE_NAMES)
        if config_path is None:
            return {}

        try:
            with open(config_path, 'r') as config_file:
                LOG.debug("Loading config from: %s", config_path)
                config = yaml.safe_load(config_file)
        except IOError as err:
            LOG.warning("Error attempting to access config file '%s': %s", config_path, err)
            return {}

        # Allow an empty config file.
        if config is None:
            return {}
        # But fail if someone tries to put something other than a dict at the top.
        elif not isinstance(config, dict):
            raise exceptions.Error("configuration file %s does not contain a top-level dictionary"
                    % config_path)
        return config

    def find_user_file(self, option_name: Optional[str], filename_list: List[str]) -> Optional[str]:
        """! @brief Search the project directory for a file.

        @retval None No matching file was found.
        @retval string An absolute path to the requested file.
        """
        file_path = self.options.get(option_name) if option_name is not None else None

        # Look for default filenames if a path wasn't provided.
        if file_path is None:
            for filename in filename_list:
                this_path = os.path.expanduser(filename)
                if not os.path.isabs(this_path):
                    this_path = os.path.join(self.project_dir, filename)
                if os.path.isfile(this_path):
                    return this_path
            return None

        # A path from options may be absolute, relative to home, or relative to the project directory.
        file_path = os.path.expanduser(file_path)
        if not os.path.isabs(file_path):
            file_path = os.path.join(self.project_dir, file_path)
        return file_path

    def _configure_logging(self) -> None:
        """! @brief Load a logging config dict or file."""
        config_value = self.options.get('logging')

        # Allow logging setting to refer to another file.
        if isinstance(config_value, str):
            logging_config_path = self.find_user_file(None, [config_value])
            if logging_config_path is None:
                LOG.warning("Logging config file '%s' does not exist", config_value)
                return
            try:
                with open(logging_config_path, 'r') as config_file:
                    config = yaml.safe_load(config_file)
                    LOG.debug("Using logging configuration from: %s", logging_config_path)
            except IOError as err:
                LOG.warning("Error attempting to load logging config file '%s': %s", config_value, err)
                return
        else:
            config = config_value

        if config is None:
            return
        config = dict(config)
        # Stuff a version key if it's missing, to make it easier to use.
        config.setdefault('version', 1)
        config.setdefault('disable_existing_loggers', False)
        # Remove an empty 'loggers' key.
        if ('loggers' in config) and (config['loggers'] is None):
            del config['loggers']

        try:
            logging.config.dictConfig(config)
        except (ValueError, TypeError, AttributeError, ImportError) as err:
            LOG.warning("Error applying logging configuration: %s", err)

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def interface(self) -> Optional[CH347USBInterface]:
        """! @brief The bridge's @ref ch347link.probe.usb.CH347USBInterface "CH347USBInterface"."""
        return self._interface

    @property
    def options(self) -> OptionsManager:
        """! @brief The @ref ch347link.core.options_manager.OptionsManager "OptionsManager" object."""
        return self._options

    @property
    def project_dir(self) -> str:
        """! @brief Path to the project directory."""
        return self._project_dir

    @property
    def jtag(self) -> JTAGEngine:
        """! @brief JTAG engine for this session's bridge, created on first access."""
        if self._jtag is None:
            from ..probe.jtag import JTAGEngine
            self._jtag = JTAGEngine(self)
        return self._jtag

    @property
    def swd(self) -> SWDEngine:
        """! @brief SWD engine for this session's bridge, created on first access."""
        if self._swd is None:
            from ..probe.swd import SWDEngine
            self._swd = SWDEngine(self)
        return self._swd

    def open(self) -> None:
        """! @brief Claim the bridge interface using the `usb.*` options."""
        if self._interface is None:
            raise exceptions.Error("cannot open a session without a bridge interface")
        if not self._closed:
            return
        self._interface.interface_number = self.options.get('usb.interface')
        self._interface.timeout = self.options.get('usb.timeout')
        self._interface.open()
        self._closed = False
        LOG.debug("Opened %r", self._interface)

    def close(self) -> None:
        """! @brief Release the bridge interface. Harmless if the session isn't open."""
        if self._closed:
            return
        self._closed = True
        assert self._interface is not None
        self._interface.close()

    def __enter__(self) -> Self:
        if self._auto_open:
            try:
                self.open()
            except Exception:
                self.close()
                raise
        return self

    def __exit__(self, exc_type: Optional[type], value: Optional[BaseException],
            traceback: Optional[TracebackType]) -> bool:
        self.close()
        return False

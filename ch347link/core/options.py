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

from typing import (Any, Dict, List, NamedTuple, Tuple, Union)

class OptionInfo(NamedTuple):
    name: str
    type: Union[type, Tuple[type, ...]]
    default: Any
    help: str

## @brief Definitions of the builtin options.
BUILTIN_OPTIONS = [
    # Common options
    OptionInfo('config_file', str, None,
        "Path to custom config file."),
    OptionInfo('logging', (str, dict), None,
        "Logging configuration dictionary, or path to YAML file containing logging configuration."),
    OptionInfo('no_config', bool, False,
        "Do not use default config file."),
    OptionInfo('probe_id', str, None,
        "Serial number of the bridge to open. If not set, the first bridge found is used."),
    OptionInfo('project_dir', str, None,
        "Directory searched for the default config file. Defaults to the working directory."),

    # JTAG options
    OptionInfo('jtag.max_chain_length', int, 32,
        "Number of identifier words shifted out of DR during chain discovery before giving up "
        "on finding the all-ones terminator."),
    OptionInfo('jtag.max_ir_scan_bits', int, 512,
        "Number of IR bits captured during IR length discovery before giving up."),
    OptionInfo('jtag.speed', int, 3,
        "JTAG clock speed index passed to the bridge init command. Larger values are faster."),

    # SWD options
    OptionInfo('swd.speed', int, 3,
        "SWD clock speed index passed to the bridge init command. Larger values are faster."),

    # Debug port options
    OptionInfo('dp.power_timeout', float, 5.0,
        "Seconds to wait for the debug and system power-up acknowledge bits in CTRL/STAT."),

    # USB options
    OptionInfo('usb.interface', int, 4,
        "USB interface number of the bridge's vendor JTAG/SWD pipe."),
    OptionInfo('usb.timeout', float, 0.5,
        "Timeout in seconds for each bulk transfer."),
    ]

## @brief The runtime dictionary of options.
OPTIONS_INFO: Dict[str, OptionInfo] = {}

def add_option_set(options: List[OptionInfo]) -> None:
    """@brief Merge a list of OptionInfo objects into OPTIONS_INFO."""
    OPTIONS_INFO.update({oi.name: oi for oi in options})

# Start with only builtin options.
add_option_set(BUILTIN_OPTIONS)

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

from typing import (Iterable, List)

def bits_to_int(bits: Iterable[int]) -> int:
    """! @brief Pack a sequence of bits into an integer, first bit as the LSB."""
    value = 0
    for i, bit in enumerate(bits):
        if bit:
            value |= 1 << i
    return value

def int_to_bits(value: int, length: int) -> List[int]:
    """! @brief Unpack the low `length` bits of an integer into a list, LSB first."""
    return [(value >> i) & 1 for i in range(length)]

def format_hex_bytes(data: Iterable[int]) -> str:
    """! @brief Space separated two-digit hex dump, as used by the trace loggers."""
    return ' '.join(f'{i:02x}' for i in data)

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
from enum import IntEnum
from typing import (NamedTuple, Optional, TYPE_CHECKING)

from ..core import exceptions
from ..utility.timeout import Timeout

if TYPE_CHECKING:
    from typing_extensions import Protocol

    class DAPEngine(Protocol):
        """! @brief Register access interface provided by both the JTAG and SWD engines."""
        def read_dp(self, addr: int) -> int: ...
        def write_dp(self, addr: int, data: int) -> None: ...
        def read_ap(self, addr: int) -> int: ...
        def write_ap(self, addr: int, data: int) -> None: ...

LOG = logging.getLogger(__name__)

TRACE = LOG.getChild("trace")
TRACE.setLevel(logging.CRITICAL)

# DP register addresses.
DP_IDR = 0x00 # read-only
DP_ABORT = 0x00 # write-only
DP_CTRL_STAT = 0x04 # read-write
DP_SELECT = 0x8 # write-only
DP_RDBUFF = 0xC # read-only

ABORT_DAPABORT = 0x00000001
ABORT_STKCMPCLR = 0x00000002
ABORT_STKERRCLR = 0x00000004
ABORT_WDERRCLR = 0x00000008
ABORT_ORUNERRCLR = 0x00000010

## All the sticky error clear bits of ABORT.
ABORT_CLEAR_ALL = ABORT_STKCMPCLR | ABORT_STKERRCLR | ABORT_WDERRCLR | ABORT_ORUNERRCLR

# DP Control / Status Register bit definitions
CTRLSTAT_ORUNDETECT = 0x00000001
CTRLSTAT_STICKYORUN = 0x00000002
CTRLSTAT_STICKYCMP = 0x00000010
CTRLSTAT_STICKYERR = 0x00000020
CTRLSTAT_READOK = 0x00000040
CTRLSTAT_WDATAERR = 0x00000080

CSYSPWRUPACK = 0x80000000
CDBGPWRUPACK = 0x20000000
CSYSPWRUPREQ = 0x40000000
CDBGPWRUPREQ = 0x10000000

TRNNORMAL = 0x00000000
MASKLANE = 0x00000f00

# DP SELECT register fields.
SELECT_APSEL_SHIFT = 24
SELECT_APSEL_MASK = 0xff000000
SELECT_APBANKSEL_SHIFT = 4
SELECT_APBANKSEL_MASK = 0x000000f0
SELECT_DPBANKSEL_MASK = 0x0000000f

DPIDR_REVISION_MASK = 0xf0000000
DPIDR_REVISION_SHIFT = 28
DPIDR_PARTNO_MASK = 0x0ff00000
DPIDR_PARTNO_SHIFT = 20
DPIDR_MIN_MASK = 0x00010000
DPIDR_VERSION_MASK = 0x0000f000
DPIDR_VERSION_SHIFT = 12

# AP register addresses.
AP_IDR = 0xFC

## @brief Class to hold fields from DP IDR register.
class DPIDR(NamedTuple):
    idr: int
    partno: int
    version: int
    revision: int
    mindp: int

class SWDAck(IntEnum):
    """! @brief SWD acknowledge values, as the three ack bits read LSB first."""
    OK = 0b001
    WAIT = 0b010
    FAULT = 0b100

class JTAGAck(IntEnum):
    """! @brief JTAG-DP acknowledge values in the low three bits of a DPACC/APACC capture.

    JTAG reports a faulted access with the same code as a successful one. The fault only shows
    in the sticky flags of CTRL/STAT.
    """
    WAIT = 0b001
    OK_FAULT = 0b010

def check_swd_ack(ack: int) -> None:
    """! @brief Raise the transfer exception matching a non-OK SWD ack."""
    if ack == SWDAck.OK:
        return
    elif ack == SWDAck.WAIT:
        raise exceptions.TransferTimeoutError("SWD ack WAIT", ack=ack)
    elif ack == SWDAck.FAULT:
        raise exceptions.TransferFaultError("SWD ack FAULT", ack=ack)
    else:
        raise exceptions.TransferError("SWD protocol error", ack=ack)

def check_jtag_ack(ack: int) -> None:
    """! @brief Raise the transfer exception matching a non-OK JTAG-DP ack."""
    if ack == JTAGAck.OK_FAULT:
        return
    elif ack == JTAGAck.WAIT:
        raise exceptions.TransferTimeoutError("JTAG ack WAIT", ack=ack)
    else:
        raise exceptions.TransferError("JTAG protocol error", ack=ack)

class RegisterAddress:
    """! @brief Address of a DP or AP register.

    The offset is the byte offset of the register within its 256-byte space. Only bits [3:2] are
    transferred on the wire. The upper bits of an AP offset are the bank, which is chosen by a
    separate write to SELECT.
    """

    ## Whether this is an AP register; overridden by subclasses.
    is_access_port = False

    def __init__(self, offset: int) -> None:
        if not (0 <= offset <= 0xff):
            raise ValueError(f"register offset 0x{offset:x} out of range")
        if offset % 4 != 0:
            raise ValueError(f"register offset 0x{offset:x} is not word aligned")
        self._offset = offset

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def a32(self) -> int:
        """! @brief Address bits A[3:2], shifted down to bits [1:0]."""
        return (self._offset >> 2) & 0x3

    @property
    def bank(self) -> int:
        return self._offset >> 4

    def __eq__(self, other):
        return isinstance(other, RegisterAddress) \
            and (self.is_access_port == other.is_access_port) \
            and (self._offset == other._offset)

    def __hash__(self):
        return hash((self.is_access_port, self._offset))

    def __repr__(self):
        return "<{}: 0x{:02x}>".format(self.__class__.__name__, self._offset)

class DPRegister(RegisterAddress):
    """! @brief Debug port register address."""
    is_access_port = False

class APRegister(RegisterAddress):
    """! @brief Access port register address."""
    is_access_port = True

def make_select(apsel: int, apbanksel: int, dpbanksel: int = 0) -> int:
    """! @brief Build an ADIv5 SELECT register value.

    @param apsel AP number, 0-255.
    @param apbanksel AP register bank, that is bits [7:4] of the AP register offset.
    @param dpbanksel DP register bank.
    """
    return (((apsel << SELECT_APSEL_SHIFT) & SELECT_APSEL_MASK)
            | ((apbanksel << SELECT_APBANKSEL_SHIFT) & SELECT_APBANKSEL_MASK)
            | (dpbanksel & SELECT_DPBANKSEL_MASK))

class DebugPort:
    """! @brief ADIv5 debug port operations on top of a JTAG or SWD engine.

    SELECT is written on every AP access instead of being cached, so each call corresponds to
    exactly the wire transactions it describes.
    """

    ## Seconds between CTRL/STAT polls while waiting for power up.
    _POWER_POLL_SLEEP_INTERVAL = 0.001

    def __init__(self, engine: "DAPEngine", power_timeout: Optional[float] = None) -> None:
        self._engine = engine
        if power_timeout is None:
            session = getattr(engine, 'session', None)
            power_timeout = session.options.get('dp.power_timeout') if session is not None else 5.0
        self._power_timeout = power_timeout

    @property
    def engine(self) -> "DAPEngine":
        return self._engine

    def read_dp(self, addr: int) -> int:
        result = self._engine.read_dp(addr)
        TRACE.debug("read_dp(addr=0x%02x) -> 0x%08x", addr, result)
        return result

    def write_dp(self, addr: int, data: int) -> None:
        TRACE.debug("write_dp(addr=0x%02x, data=0x%08x)", addr, data)
        self._engine.write_dp(addr, data)

    def select_ap(self, apsel: int, bank: int = 0) -> None:
        """! @brief Write SELECT to address the given AP and register bank."""
        self.write_dp(DP_SELECT, make_select(apsel, bank))

    def read_ap(self, apsel: int, addr: int) -> int:
        """! @brief Read an AP register.

        The AP read returns the result of the previous AP access, so the value is fetched with a
        following read of RDBUFF.
        """
        self.select_ap(apsel, addr >> 4)
        self._engine.read_ap(addr & 0xf)
        result = self._engine.read_dp(DP_RDBUFF)
        TRACE.debug("read_ap(ap=%d, addr=0x%02x) -> 0x%08x", apsel, addr, result)
        return result

    def write_ap(self, apsel: int, addr: int, data: int) -> None:
        TRACE.debug("write_ap(ap=%d, addr=0x%02x, data=0x%08x)", apsel, addr, data)
        self.select_ap(apsel, addr >> 4)
        self._engine.write_ap(addr & 0xf, data)

    def clear_sticky_errors(self) -> None:
        """! @brief Clear all sticky error flags through ABORT."""
        self.write_dp(DP_ABORT, ABORT_CLEAR_ALL)

    def power_up_debug(self) -> None:
        """! @brief Assert DP power requests.

        Request both debug and system power be enabled, and wait until the request is acked.

        @exception DebugError The acknowledge bits did not appear within the `dp.power_timeout`
            option's number of seconds.
        """
        self.write_dp(DP_CTRL_STAT, CSYSPWRUPREQ | CDBGPWRUPREQ | MASKLANE | TRNNORMAL)

        with Timeout(self._power_timeout, self._POWER_POLL_SLEEP_INTERVAL) as time_out:
            while time_out.check():
                r = self.read_dp(DP_CTRL_STAT)
                if (r & (CDBGPWRUPACK | CSYSPWRUPACK)) == (CDBGPWRUPACK | CSYSPWRUPACK):
                    break
            else:
                raise exceptions.DebugError("timed out waiting for debug power-up acknowledge")
        LOG.debug("debug and system power up acknowledged")

    def read_idr(self) -> DPIDR:
        """! @brief Read and decode the DP IDR register."""
        dpidr = self.read_dp(DP_IDR)
        dp_partno = (dpidr & DPIDR_PARTNO_MASK) >> DPIDR_PARTNO_SHIFT
        dp_version = (dpidr & DPIDR_VERSION_MASK) >> DPIDR_VERSION_SHIFT
        dp_revision = (dpidr & DPIDR_REVISION_MASK) >> DPIDR_REVISION_SHIFT
        is_mindp = (dpidr & DPIDR_MIN_MASK) != 0
        return DPIDR(dpidr, dp_partno, dp_version, dp_revision, is_mindp)

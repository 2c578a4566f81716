# ch347link
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
from enum import Enum
from typing import (List, NamedTuple, Optional, Sequence, TYPE_CHECKING)

from ..core import exceptions
from ..coresight.dap import (APRegister, DPRegister, DP_ABORT, DP_RDBUFF, RegisterAddress, check_jtag_ack)
from ..utility.conversion import (bits_to_int, format_hex_bytes, int_to_bits)
from ..utility.mask import bitmask

if TYPE_CHECKING:
    from ..core.session import Session
    from .usb import CH347USBInterface

LOG = logging.getLogger(__name__)

TRACE = LOG.getChild("trace")
TRACE.setLevel(logging.CRITICAL)

class ClockUnit(NamedTuple):
    """! @brief One TCK cycle with TMS and TDI held, and whether to keep the sampled TDO."""
    tms: int
    tdi: int
    capture: bool

    def encode(self) -> bytes:
        """! @brief Clock-low byte followed by the clock-high byte."""
        low = (self.tms << 1) | (self.tdi << 4)
        return bytes((low, low | 0x01))

class TAPState(Enum):
    """! @brief Subset of the TAP controller states the shifter moves between."""
    UNKNOWN = 0
    RESET = 1
    IDLE = 2
    SHIFT = 3
    EXIT1 = 4

class JTAGShifter:
    """! @brief Queues clock units for the bridge and collects the captured TDO bits.

    The shifter tracks the TAP state that the queued clocks will leave the target in, and refuses
    operations that are not valid from that state. Only reset() is accepted from UNKNOWN, which is
    the initial state and the state after a failed flush.
    """

    ## Bridge command that clocks out a batch of units.
    CMD_CLOCK = 0xD2

    ## Units per command packet. 2 bytes each plus the 3 byte header fit a 512 byte bulk packet.
    MAX_CLOCKS_PER_PACKET = 254

    def __init__(self, interface: "CH347USBInterface") -> None:
        self._interface = interface
        self._queue: List[ClockUnit] = []
        self._bits: List[int] = []
        self._state = TAPState.UNKNOWN

    @property
    def state(self) -> TAPState:
        return self._state

    @property
    def pending(self) -> int:
        """! @brief Number of queued clock units not yet flushed."""
        return len(self._queue)

    @property
    def bits(self) -> List[int]:
        """! @brief Copy of the captured bits that have not been drained."""
        return list(self._bits)

    def _require(self, operation: str, *states: TAPState) -> None:
        if self._state not in states:
            raise exceptions.JTAGStateError(f"cannot {operation} from TAP state {self._state.name}")

    def _clock(self, tms: int, tdi: int = 1, capture: bool = False) -> None:
        self._queue.append(ClockUnit(tms, tdi, capture))

    def reset(self) -> None:
        """! @brief Five clocks with TMS high move the TAP to Test-Logic-Reset from any state."""
        for _ in range(5):
            self._clock(1)
        self._state = TAPState.RESET

    def enter_idle(self) -> None:
        self._require("enter Run-Test/Idle", TAPState.RESET, TAPState.EXIT1)
        if self._state is TAPState.EXIT1:
            # Exit1 -> Update -> Idle
            self._clock(1)
        self._clock(0)
        self._state = TAPState.IDLE

    def enter_shift_ir(self) -> None:
        self._require("enter Shift-IR", TAPState.IDLE)
        for tms in (1, 1, 0, 0):
            self._clock(tms)
        self._state = TAPState.SHIFT

    def enter_shift_dr(self) -> None:
        self._require("enter Shift-DR", TAPState.IDLE)
        for tms in (1, 0, 0):
            self._clock(tms)
        self._state = TAPState.SHIFT

    def shift(self, value: int, length: int, capture: bool = True, exit: bool = False) -> None:
        """! @brief Queue _length_ bits of _value_, LSB first.

        @param self
        @param value Bits to drive on TDI.
        @param length Number of bits.
        @param capture Whether the TDO bits sampled during these clocks are kept.
        @param exit Raise TMS on the last bit, which leaves the TAP in Exit1.
        """
        self._require("shift", TAPState.SHIFT)
        for i, bit in enumerate(int_to_bits(value, length)):
            last = exit and (i == length - 1)
            self._clock(1 if last else 0, bit, capture)
        if exit and length:
            self._state = TAPState.EXIT1

    def pad(self, count: int, exit: bool = False) -> None:
        """! @brief Queue _count_ bits of TDI=1 without capture."""
        self.shift(bitmask((count - 1, 0)) if count else 0, count, capture=False, exit=exit)

    def exit_shift(self) -> None:
        """! @brief One clock with TMS high to leave a Shift state without shifting data bits."""
        self._require("exit shift", TAPState.SHIFT)
        self._clock(1)
        self._state = TAPState.EXIT1

    def _encode(self, units: Sequence[ClockUnit]) -> bytes:
        payload = b''.join(unit.encode() for unit in units)
        return bytes((self.CMD_CLOCK, len(payload) & 0xff, len(payload) >> 8)) + payload

    def flush(self) -> None:
        """! @brief Send all queued clock units and collect the bits sampled with capture set.

        Units go out in packets of up to MAX_CLOCKS_PER_PACKET. The captured bits are appended to
        the bit buffer only after every packet was answered. If any transfer fails, the queue is
        discarded, the bit buffer is left as it was, and the state becomes UNKNOWN.
        """
        if not self._queue:
            return

        captured = []
        try:
            for offset in range(0, len(self._queue), self.MAX_CLOCKS_PER_PACKET):
                chunk = self._queue[offset:offset + self.MAX_CLOCKS_PER_PACKET]
                self._interface.write(self._encode(chunk))
                expected = 3 + len(chunk)
                response = self._interface.read(expected)
                if TRACE.isEnabledFor(logging.DEBUG):
                    TRACE.debug("clock response: %s", format_hex_bytes(response))
                if len(response) != expected:
                    raise exceptions.ProbeError(
                            f"short JTAG clock response (got {len(response)}, expected {expected} bytes)")
                if response[0] != self.CMD_CLOCK:
                    raise exceptions.ProbeError(f"unexpected JTAG clock response 0x{response[0]:02x}")
                captured.extend(tdo & 0x01 for unit, tdo in zip(chunk, response[3:]) if unit.capture)
        except Exception:
            self._state = TAPState.UNKNOWN
            raise
        finally:
            self._queue.clear()

        self._bits.extend(captured)

    def drain(self) -> List[int]:
        """! @brief Return and clear the captured bits."""
        bits = self._bits
        self._bits = []
        return bits

class TAPChain:
    """! @brief Description of a JTAG scan chain and the padding needed to address one of its TAPs.

    Index 0 is the TAP nearest to TDO, which is the first TAP whose bits come out during a scan.
    Before any TAP is selected all padding counts are zero, which addresses a single-TAP chain.
    """

    def __init__(self, idcodes: Optional[Sequence[int]] = None,
            ir_lengths: Optional[Sequence[int]] = None) -> None:
        self._idcodes = list(idcodes or [])
        self._ir_lengths = list(ir_lengths or [])
        self._selected: Optional[int] = None
        self.ir_pre = 0
        self.ir_pos = 0
        self.pre = 0
        self.pos = 0

    @property
    def idcodes(self) -> List[int]:
        return self._idcodes

    @property
    def ir_lengths(self) -> List[int]:
        return self._ir_lengths

    @property
    def count(self) -> int:
        """! @brief Number of TAPs, from the IDCODEs if known, otherwise from the IR lengths."""
        return len(self._idcodes) if self._idcodes else len(self._ir_lengths)

    @property
    def selected(self) -> Optional[int]:
        return self._selected

    def select(self, index: int) -> None:
        """! @brief Compute the IR and bypass padding around TAP _index_.

        @exception TAPIndexError _index_ is outside the chain, or the IR lengths don't describe
            the same number of TAPs as the IDCODEs.
        """
        if not (0 <= index < self.count):
            raise exceptions.TAPIndexError(f"TAP index {index} out of range for chain of {self.count} TAPs")
        if len(self._ir_lengths) != self.count:
            raise exceptions.TAPIndexError(f"IR lengths {self._ir_lengths} do not match chain of "
                    f"{self.count} TAPs; run discover_ir_lengths() or configure_chain()")
        self.ir_pre = sum(self._ir_lengths[:index])
        self.ir_pos = sum(self._ir_lengths[index + 1:])
        self.pre = index
        self.pos = self.count - index - 1
        self._selected = index

    def __repr__(self):
        return "<{}: idcodes=[{}] ir_lengths={} selected={}>".format(self.__class__.__name__,
                ", ".join(f"0x{i:08x}" for i in self._idcodes), self._ir_lengths, self._selected)

class JTAGEngine:
    """! @brief JTAG scan chain discovery and ADIv5 JTAG-DP register access.

    The engine owns a JTAGShifter on the session's bridge interface. Chain discovery fills in a
    TAPChain; select_target() then chooses the TAP that write_ir(), write_dr() and the DP/AP
    accessors talk to.
    """

    ## Bridge command that configures the JTAG engine and its clock.
    CMD_INIT = 0xD0

    ## JTAG-DP instructions.
    IR_ABORT = 0x8
    IR_DPACC = 0xA
    IR_APACC = 0xB
    DAP_IR_LENGTH = 4

    ## DPACC/APACC scan length: 3 bits of address and RnW, then 32 data bits.
    DAP_DR_LENGTH = 35

    ## Value shifted out of DR after the last TAP, with TDI held high.
    CHAIN_TERMINATOR = 0xFFFFFFFF

    def __init__(self, session: "Session") -> None:
        self._session = session
        self._shifter = JTAGShifter(session.interface)
        self._chain = TAPChain()

    @property
    def session(self) -> "Session":
        return self._session

    @property
    def shifter(self) -> JTAGShifter:
        return self._shifter

    @property
    def chain(self) -> TAPChain:
        return self._chain

    def init(self, speed: Optional[int] = None) -> List[int]:
        """! @brief Configure the bridge for JTAG, reset the TAPs and discover the scan chain.

        @param self
        @param speed Clock speed index. Defaults to the `jtag.speed` option.
        @return List of IDCODEs found, nearest to TDO first.
        """
        if speed is None:
            speed = self._session.options.get('jtag.speed')
        interface = self._session.interface
        interface.write(bytes((self.CMD_INIT, 0x06, 0x00, 0x00, speed, 0x00, 0x00, 0x00, 0x00)))
        response = interface.read(4)
        if not response or response[0] != self.CMD_INIT:
            raise exceptions.ProbeError("bridge did not acknowledge JTAG init (response: %s)"
                    % format_hex_bytes(response))
        LOG.debug("JTAG init at speed %d, status %s", speed, format_hex_bytes(response[1:]))

        self.reset_and_idle()
        idcodes = self.discover_chain()
        ir_lengths = self.discover_ir_lengths()
        if len(idcodes) != len(ir_lengths):
            LOG.warning("found %d IDCODEs but %d IR lengths %s; IR length detection may have failed "
                    "for this chain", len(idcodes), len(ir_lengths), ir_lengths)
        LOG.info("JTAG chain: %s", self._chain)
        return idcodes

    def reset_and_idle(self) -> None:
        """! @brief Force Test-Logic-Reset then move to Run-Test/Idle."""
        self._shifter.reset()
        self._shifter.enter_idle()
        self._shifter.flush()

    def _capture_ones(self, length: int) -> int:
        self._shifter.shift(bitmask((length - 1, 0)), length, capture=True)
        self._shifter.flush()
        return bits_to_int(self._shifter.drain())

    def _return_to_idle(self) -> None:
        self._shifter.exit_shift()
        self._shifter.enter_idle()
        self._shifter.flush()

    def discover_chain(self) -> List[int]:
        """! @brief Read the IDCODE of every TAP from DR after reset.

        All-ones is shifted in, so the first all-ones word that comes out marks the end of the
        chain. The chain descriptor is replaced with the result.

        @exception ChainScanError No terminator within `jtag.max_chain_length` words.
        """
        max_words = self._session.options.get('jtag.max_chain_length')
        self._shifter.drain()
        self._shifter.enter_shift_dr()

        idcodes = []
        for _ in range(max_words):
            word = self._capture_ones(32)
            if word == self.CHAIN_TERMINATOR:
                break
            LOG.debug("found TAP with IDCODE 0x%08x", word)
            idcodes.append(word)
        else:
            self._return_to_idle()
            raise exceptions.ChainScanError(f"no end of chain within {max_words} DR words")

        self._return_to_idle()
        # IR lengths from an earlier scan only carry over to a chain of the same size.
        ir_lengths = self._chain.ir_lengths
        if len(ir_lengths) != len(idcodes):
            ir_lengths = []
        self._chain = TAPChain(idcodes, ir_lengths)
        return idcodes

    def discover_ir_lengths(self) -> List[int]:
        """! @brief Estimate the IR length of every TAP from the IR capture pattern.

        IEEE 1149.1 requires each IR to capture with its two low bits as 01. The captured stream
        is read one bit at a time: after the first bit, each 0 to 1 step ends an IR whose length
        is the run counted so far. Two ones in a row are the all-ones shifted in behind the
        chain and end the scan. TAPs that capture extra ones in their IR confuse this; use
        configure_chain() for those.

        @exception ChainScanError No end found within `jtag.max_ir_scan_bits` bits.
        """
        max_bits = self._session.options.get('jtag.max_ir_scan_bits')
        self._shifter.drain()
        self._shifter.enter_shift_ir()

        ir_lengths = []
        previous = None
        count = 0
        for _ in range(max_bits):
            bit = self._capture_ones(1)
            if previous is None:
                count = 1
            elif previous == 0 and bit == 1:
                ir_lengths.append(count)
                count = 1
            elif previous == 1 and bit == 1:
                break
            else:
                count += 1
            previous = bit
        else:
            self._return_to_idle()
            raise exceptions.ChainScanError(f"no end of IR chain within {max_bits} bits")

        self._return_to_idle()
        LOG.debug("IR lengths: %s", ir_lengths)
        self._chain = TAPChain(self._chain.idcodes, ir_lengths)
        return ir_lengths

    def configure_chain(self, ir_lengths: Sequence[int], idcodes: Optional[Sequence[int]] = None) -> None:
        """! @brief Replace the discovered chain with known IR lengths."""
        if idcodes is None:
            idcodes = self._chain.idcodes
        self._chain = TAPChain(idcodes, ir_lengths)

    def select_target(self, index: int) -> None:
        self._chain.select(index)
        LOG.debug("selected TAP %d: ir_pre=%d ir_pos=%d pre=%d pos=%d", index,
                self._chain.ir_pre, self._chain.ir_pos, self._chain.pre, self._chain.pos)

    def _scan(self, value: int, length: int, pre: int, pos: int) -> List[int]:
        # Caller has already entered the Shift state.
        shifter = self._shifter
        shifter.pad(pre)
        shifter.shift(value, length, capture=True, exit=(pos == 0))
        if pos:
            shifter.pad(pos, exit=True)
        shifter.enter_idle()
        shifter.flush()
        return shifter.drain()

    def write_ir(self, value: int, length: int) -> List[int]:
        """! @brief Shift an instruction into the selected TAP, with the others set to BYPASS.

        @return The bits captured from the selected TAP's IR, LSB first.
        @exception ValueError _length_ is less than 1.
        """
        if length < 1:
            raise ValueError(f"IR scan length must be at least 1, not {length}")
        self._shifter.drain()
        self._shifter.enter_shift_ir()
        return self._scan(value, length, self._chain.ir_pre, self._chain.ir_pos)

    def write_dr(self, value: int, length: int) -> List[int]:
        """! @brief Shift a value through the selected TAP's DR.

        @return The bits captured from the selected TAP's DR, LSB first.
        @exception ValueError _length_ is less than 1.
        """
        if length < 1:
            raise ValueError(f"DR scan length must be at least 1, not {length}")
        self._shifter.drain()
        self._shifter.enter_shift_dr()
        return self._scan(value, length, self._chain.pre, self._chain.pos)

    def access_register(self, address: RegisterAddress, value: Optional[int] = None) -> int:
        """! @brief Perform one DPACC or APACC scan.

        JTAG-DP accesses are posted: the captured value and ack belong to the previous access,
        and the first access after selecting a TAP returns stale data.

        @param self
        @param address DP or AP register address.
        @param value Data to write, or None to read.
        @return Data captured by this scan, the result of the previous access.
        @exception TransferTimeoutError The previous access was answered with WAIT.
        @exception TransferError Any other ack except OK/FAULT.
        """
        self.write_ir(self.IR_APACC if address.is_access_port else self.IR_DPACC, self.DAP_IR_LENGTH)
        rnw = 1 if value is None else 0
        request = ((value or 0) << 3) | (address.a32 << 1) | rnw
        captured = bits_to_int(self.write_dr(request, self.DAP_DR_LENGTH))
        ack = captured & 0x7
        TRACE.debug("%s 0x%02x %s -> ack %d data 0x%08x", "APACC" if address.is_access_port else "DPACC",
                address.offset, "read" if rnw else f"write 0x{value:08x}", ack, captured >> 3)
        check_jtag_ack(ack)
        return captured >> 3

    def read_dp(self, addr: int) -> int:
        """! @brief Read a DP register.

        The result is collected with a second scan to RDBUFF. Reading RDBUFF itself takes a single
        scan, returning the result of whatever access came before.
        """
        if addr == DP_RDBUFF:
            return self.access_register(DPRegister(DP_RDBUFF))
        self.access_register(DPRegister(addr))
        return self.access_register(DPRegister(DP_RDBUFF))

    def write_dp(self, addr: int, data: int) -> None:
        """! @brief Write a DP register.

        JTAG-DP has a separate instruction for ABORT. Its scan carries no ack.
        """
        if addr == DP_ABORT:
            self.write_ir(self.IR_ABORT, self.DAP_IR_LENGTH)
            self.write_dr(data << 3, self.DAP_DR_LENGTH)
            return
        self.access_register(DPRegister(addr), data)

    def read_ap(self, addr: int) -> int:
        """! @brief Issue an AP read. The returned value belongs to the previous access."""
        return self.access_register(APRegister(addr))

    def write_ap(self, addr: int, data: int) -> None:
        self.access_register(APRegister(addr), data)

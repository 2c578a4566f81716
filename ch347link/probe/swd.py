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
from typing import (List, NamedTuple, Optional, TYPE_CHECKING, Union)

from ..core import exceptions
from ..coresight.dap import check_swd_ack
from ..utility.conversion import format_hex_bytes
from ..utility.mask import parity32

if TYPE_CHECKING:
    from ..core.session import Session

LOG = logging.getLogger(__name__)

TRACE = LOG.getChild("trace")
TRACE.setLevel(logging.CRITICAL)

# SWD request header format
SWD_CMD_START = (1 << 0)    # always set
SWD_CMD_APnDP = (1 << 1)    # set only for AP access
SWD_CMD_RnW = (1 << 2)      # set only for read access
SWD_CMD_A32 = (3 << 3)      # bits A[3:2] of register addr
SWD_CMD_PARITY = (1 << 5)   # parity of APnDP|RnW|A32
SWD_CMD_STOP = (0 << 6)     # always clear for synch SWD
SWD_CMD_PARK = (1 << 7)     # driven high by host

# Bridge SWD subcommands.
SUBCMD_REG_WRITE = 0xA0
SUBCMD_SEQUENCE = 0xA1
SUBCMD_REG_READ = 0xA2

## Line reset sequence, 56 cycles with SWDIO high.
LINE_RESET = b'\xff' * 7

## JTAG to SWD select sequence, sent LSB first.
JTAG_TO_SWD_SELECT = 0xE79E

def make_request(address: int, is_access_port: bool, is_read: bool) -> int:
    """! @brief Build an SWD request header byte.

    @param address Register byte offset. Only bits [3:2] are used.
    @param is_access_port True for an AP access, False for DP.
    @param is_read True for a read request.
    """
    cmd = (int(is_access_port) << 1) | (int(is_read) << 2) | ((address << 1) & SWD_CMD_A32)
    cmd |= parity32(cmd >> 1) << 5
    cmd |= SWD_CMD_START | SWD_CMD_STOP | SWD_CMD_PARK
    return cmd

class SWDRequest(NamedTuple):
    address: int
    is_access_port: bool
    is_read: bool

def decode_request(header: int) -> SWDRequest:
    """! @brief Recover the address bits, APnDP and RnW from a request header.

    @exception ValueError The start, stop, park or parity bit is wrong.
    """
    if (header & 0xc1) != (SWD_CMD_START | SWD_CMD_PARK):
        raise ValueError(f"malformed SWD request 0x{header:02x}")
    if ((header & SWD_CMD_PARITY) >> 5) != parity32((header >> 1) & 0xf):
        raise ValueError(f"SWD request 0x{header:02x} has bad parity")
    return SWDRequest((header & SWD_CMD_A32) >> 1, bool(header & SWD_CMD_APnDP), bool(header & SWD_CMD_RnW))

class RegisterRead(NamedTuple):
    """! @brief Queued DP or AP register read."""
    address: int
    is_access_port: bool

    ## Subcommand echo, ack, 4 data bytes and parity.
    RESPONSE_LENGTH = 7

    def encode(self) -> bytes:
        return bytes((SUBCMD_REG_READ, 0x22, 0x00, make_request(self.address, self.is_access_port, True)))

class RegisterWrite(NamedTuple):
    """! @brief Queued DP or AP register write."""
    address: int
    is_access_port: bool
    data: int

    ## Subcommand echo and ack.
    RESPONSE_LENGTH = 2

    def encode(self) -> bytes:
        return bytes((SUBCMD_REG_WRITE, 0x29, 0x00, make_request(self.address, self.is_access_port, False))) \
            + self.data.to_bytes(4, 'little') + bytes((parity32(self.data),))

class RawSequence(NamedTuple):
    """! @brief Queued raw bit sequence on SWDIO, such as a line reset."""
    data: bytes
    bit_length: int

    ## Subcommand echo only.
    RESPONSE_LENGTH = 1

    def encode(self) -> bytes:
        return bytes((SUBCMD_SEQUENCE, self.bit_length & 0xff, self.bit_length >> 8)) + bytes(self.data)

SubCommand = Union[RegisterRead, RegisterWrite, RawSequence]

class SWDEngine:
    """! @brief Batches SWD subcommands into bridge packets.

    Subcommands queued with push() are sent together by flush(), in one USB write and one read.
    The engine does not retry on WAIT or FAULT, and it does not hide the posted AP read: a read of
    an AP register returns the result of the previous AP read.
    """

    ## Bridge command that configures the SWD engine and its clock.
    CMD_INIT = 0xE5

    ## Bridge command carrying a batch of subcommands.
    CMD_BATCH = 0xE8

    ## Bridge packet buffer size, for both the command and its response.
    PACKET_SIZE = 512

    def __init__(self, session: "Session") -> None:
        self._session = session
        self._interface = session.interface
        self._pending: List[SubCommand] = []
        self._payload = bytearray()
        self._response_length = 0

    @property
    def session(self) -> "Session":
        return self._session

    @property
    def pending(self) -> List[SubCommand]:
        return list(self._pending)

    def init(self, speed: Optional[int] = None) -> None:
        """! @brief Configure the bridge for SWD.

        @param self
        @param speed Clock speed index. Defaults to the `swd.speed` option.
        """
        if speed is None:
            speed = self._session.options.get('swd.speed')
        self._interface.write(bytes((self.CMD_INIT, 0x08, 0x00, 0x40, 0x42, 0x0f, 0x00, speed, 0x00, 0x00, 0x00)))
        response = self._interface.read(4)
        if not response or response[0] != self.CMD_INIT:
            raise exceptions.ProbeError("bridge did not acknowledge SWD init (response: %s)"
                    % format_hex_bytes(response))
        LOG.debug("SWD init at speed %d, status %s", speed, format_hex_bytes(response[1:]))

    def push(self, subcommand: SubCommand) -> None:
        """! @brief Append a subcommand to the current batch.

        @exception BufferOverflowError The command or its response would not fit in one packet.
        """
        frame = subcommand.encode()
        if 3 + len(self._payload) + len(frame) > self.PACKET_SIZE:
            raise exceptions.BufferOverflowError(
                    f"SWD batch of {len(self._pending) + 1} subcommands exceeds the {self.PACKET_SIZE} byte packet")
        if 3 + self._response_length + subcommand.RESPONSE_LENGTH > self.PACKET_SIZE:
            raise exceptions.BufferOverflowError(
                    f"SWD batch response of {len(self._pending) + 1} subcommands exceeds the "
                    f"{self.PACKET_SIZE} byte packet")
        self._pending.append(subcommand)
        self._payload += frame
        self._response_length += subcommand.RESPONSE_LENGTH

    def take(self) -> bytes:
        """! @brief Return the encoded payload of all queued subcommands and clear the queue."""
        payload = bytes(self._payload)
        self._pending = []
        self._payload = bytearray()
        self._response_length = 0
        return payload

    def flush(self) -> List[Optional[int]]:
        """! @brief Send the queued batch and parse the response.

        @return One entry per subcommand, in order: the data for reads, None for the others.
        @exception TransferError The first subcommand answered with a non-OK ack, or a read with
            bad data parity. The other results of the batch are discarded.
        """
        if not self._pending:
            return []
        subcommands = self._pending
        expected = 3 + self._response_length
        payload = self.take()

        packet = bytes((self.CMD_BATCH, len(payload) & 0xff, len(payload) >> 8)) + payload
        self._interface.write(packet)
        response = self._interface.read(expected)
        if TRACE.isEnabledFor(logging.DEBUG):
            TRACE.debug("batch response: %s", format_hex_bytes(response))
        if len(response) != expected:
            raise exceptions.ProbeError(
                    f"short SWD response (got {len(response)}, expected {expected} bytes)")
        if response[0] != self.CMD_BATCH:
            raise exceptions.ProbeError(f"unexpected SWD response 0x{response[0]:02x}")

        results: List[Optional[int]] = []
        acks = []
        offset = 3
        for subcommand in subcommands:
            frame = response[offset:offset + subcommand.RESPONSE_LENGTH]
            offset += subcommand.RESPONSE_LENGTH
            if frame[0] != subcommand.encode()[0]:
                raise exceptions.ProbeError(f"SWD response frame 0x{frame[0]:02x} does not match "
                        f"subcommand 0x{subcommand.encode()[0]:02x}")
            if isinstance(subcommand, RawSequence):
                results.append(None)
                continue
            ack = frame[1] & 0x07
            acks.append((subcommand, ack, frame))
            if isinstance(subcommand, RegisterRead):
                results.append(int.from_bytes(frame[2:6], 'little'))
            else:
                results.append(None)

        for subcommand, ack, frame in acks:
            check_swd_ack(ack)
            if isinstance(subcommand, RegisterRead):
                data = int.from_bytes(frame[2:6], 'little')
                if (frame[6] & 0x01) != parity32(data):
                    raise exceptions.TransferError(f"bad parity in SWD read of 0x{subcommand.address:02x}")
        return results

    def sequence(self, data: bytes, bit_length: Optional[int] = None) -> None:
        """! @brief Clock out a raw SWDIO sequence, LSB of the first byte first."""
        if bit_length is None:
            bit_length = len(data) * 8
        self.push(RawSequence(bytes(data), bit_length))
        self.flush()

    def reset(self) -> None:
        """! @brief SWD line reset."""
        self.sequence(LINE_RESET)

    def idle(self) -> None:
        self.sequence(b'\x00')

    def reset_and_idle(self) -> None:
        self.reset()
        self.idle()

    def jtag_to_swd(self) -> None:
        """! @brief Switch an SWJ-DP from JTAG to SWD."""
        self.reset()
        self.sequence(JTAG_TO_SWD_SELECT.to_bytes(2, 'little'))
        self.reset()

    def read_register(self, address: int, is_access_port: bool) -> int:
        """! @brief Read one DP or AP register in its own batch.

        AP reads are posted. The value returned belongs to the previous AP read; read RDBUFF or
        repeat the read to get the value of this one.
        """
        result = self._run(RegisterRead(address, is_access_port))
        TRACE.debug("read %s 0x%02x -> 0x%08x", "AP" if is_access_port else "DP", address, result)
        return result

    def write_register(self, address: int, is_access_port: bool, data: int) -> None:
        TRACE.debug("write %s 0x%02x <- 0x%08x", "AP" if is_access_port else "DP", address, data)
        self._run(RegisterWrite(address, is_access_port, data))

    def _run(self, subcommand: SubCommand) -> Optional[int]:
        self.push(subcommand)
        return self.flush()[-1]

    def read_dp(self, addr: int) -> int:
        return self.read_register(addr, False)

    def write_dp(self, addr: int, data: int) -> None:
        self.write_register(addr, False, data)

    def read_ap(self, addr: int) -> int:
        return self.read_register(addr, True)

    def write_ap(self, addr: int, data: int) -> None:
        self.write_register(addr, True, data)

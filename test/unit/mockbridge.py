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

import errno
from array import array
from collections import deque

import usb.core

from ch347link.utility.mask import parity32

# IEEE 1149.1 TAP controller states.
TLR = 'test-logic-reset'
RTI = 'run-test/idle'
SELECT_DR = 'select-dr'
CAPTURE_DR = 'capture-dr'
SHIFT_DR = 'shift-dr'
EXIT1_DR = 'exit1-dr'
PAUSE_DR = 'pause-dr'
EXIT2_DR = 'exit2-dr'
UPDATE_DR = 'update-dr'
SELECT_IR = 'select-ir'
CAPTURE_IR = 'capture-ir'
SHIFT_IR = 'shift-ir'
EXIT1_IR = 'exit1-ir'
PAUSE_IR = 'pause-ir'
EXIT2_IR = 'exit2-ir'
UPDATE_IR = 'update-ir'

## Next state for TMS=0 and TMS=1.
TAP_TRANSITIONS = {
    TLR:        (RTI, TLR),
    RTI:        (RTI, SELECT_DR),
    SELECT_DR:  (CAPTURE_DR, SELECT_IR),
    CAPTURE_DR: (SHIFT_DR, EXIT1_DR),
    SHIFT_DR:   (SHIFT_DR, EXIT1_DR),
    EXIT1_DR:   (PAUSE_DR, UPDATE_DR),
    PAUSE_DR:   (PAUSE_DR, EXIT2_DR),
    EXIT2_DR:   (SHIFT_DR, UPDATE_DR),
    UPDATE_DR:  (RTI, SELECT_DR),
    SELECT_IR:  (CAPTURE_IR, TLR),
    CAPTURE_IR: (SHIFT_IR, EXIT1_IR),
    SHIFT_IR:   (SHIFT_IR, EXIT1_IR),
    EXIT1_IR:   (PAUSE_IR, UPDATE_IR),
    PAUSE_IR:   (PAUSE_IR, EXIT2_IR),
    EXIT2_IR:   (SHIFT_IR, UPDATE_IR),
    UPDATE_IR:  (RTI, SELECT_IR),
    }

SWD_ACK_OK = 0b001
SWD_ACK_WAIT = 0b010
SWD_ACK_FAULT = 0b100
SWD_NO_ACK = 0b111

JTAG_ACK_OK_FAULT = 0b010

class MockDAP:
    """ADIv5 DP with one MEM-AP worth of registers, shared by the JTAG and SWD front ends."""

    def __init__(self, idr=0x2BA01477, ap_registers=None):
        self.idr = idr
        self.ctrl_stat = 0
        self.select = 0
        self.rdbuff = 0
        self.aborts = []
        self.ap_writes = []
        # Keyed by (apsel, register offset including bank).
        self.ap_registers = {(0, 0xFC): 0x24770011} if ap_registers is None else dict(ap_registers)

    def dp_read(self, addr):
        if addr == 0x0:
            return self.idr
        elif addr == 0x4:
            return self.ctrl_stat
        elif addr == 0x8:
            return self.select
        else:
            return self.rdbuff

    def dp_write(self, addr, value):
        if addr == 0x0:
            self.aborts.append(value)
        elif addr == 0x4:
            # Power-up acks follow their requests immediately.
            self.ctrl_stat = value | ((value & 0x50000000) << 1)
        elif addr == 0x8:
            self.select = value

    def _ap_key(self, addr):
        return (self.select >> 24, (self.select & 0xf0) | addr)

    def ap_read(self, addr):
        self.rdbuff = self.ap_registers.get(self._ap_key(addr), 0)
        return self.rdbuff

    def ap_write(self, addr, value):
        key = self._ap_key(addr)
        self.ap_registers[key] = value
        self.ap_writes.append((key, value))

class MockTAP:
    """One TAP with IDCODE, BYPASS, optional JTAG-DP and plain data registers.

    `data_registers` maps an instruction to a DR length. Such a register keeps what was shifted
    into it and captures it again on the next scan.
    """

    IR_ABORT = 0x8
    IR_DPACC = 0xA
    IR_APACC = 0xB
    IR_IDCODE = 0xE

    def __init__(self, idcode, ir_length=4, dap=None, data_registers=None):
        self.idcode = idcode
        self.ir_length = ir_length
        self.dap = dap
        self.bypass = (1 << ir_length) - 1
        self.data_lengths = dict(data_registers or {})
        self.data_values = {instr: 0 for instr in self.data_lengths}
        self.last_result = 0
        self.last_ack = JTAG_ACK_OK_FAULT
        self.accesses = []
        self.shreg = 0
        self.shlen = 1
        self.reset()

    def reset(self):
        self.ir = self.IR_IDCODE if self.idcode is not None else self.bypass

    def capture_ir(self):
        self.shreg = 0b01
        self.shlen = self.ir_length

    def update_ir(self):
        self.ir = self.shreg

    def _is_dap_instruction(self):
        return self.dap is not None and self.ir in (self.IR_DPACC, self.IR_APACC)

    def capture_dr(self):
        if self.ir == self.IR_IDCODE and self.idcode is not None:
            self.shreg, self.shlen = self.idcode, 32
        elif self._is_dap_instruction():
            self.shreg, self.shlen = (self.last_result << 3) | self.last_ack, 35
        elif self.dap is not None and self.ir == self.IR_ABORT:
            self.shreg, self.shlen = 0, 35
        elif self.ir in self.data_lengths:
            self.shreg, self.shlen = self.data_values[self.ir], self.data_lengths[self.ir]
        else:
            self.shreg, self.shlen = 0, 1

    def update_dr(self):
        if self._is_dap_instruction():
            rnw = self.shreg & 1
            addr = ((self.shreg >> 1) & 0x3) << 2
            data = (self.shreg >> 3) & 0xffffffff
            is_ap = self.ir == self.IR_APACC
            self.accesses.append((is_ap, addr, None if rnw else data))
            if is_ap:
                self.last_result = self.dap.ap_read(addr) if rnw else self.dap.ap_write(addr, data) or 0
            else:
                self.last_result = self.dap.dp_read(addr) if rnw else self.dap.dp_write(addr, data) or 0
            self.last_ack = JTAG_ACK_OK_FAULT
        elif self.dap is not None and self.ir == self.IR_ABORT:
            self.dap.dp_write(0x0, (self.shreg >> 3) & 0xffffffff)
        elif self.ir in self.data_lengths:
            self.data_values[self.ir] = self.shreg

    def shift(self, tdi):
        out = self.shreg & 1
        self.shreg = (self.shreg >> 1) | (tdi << (self.shlen - 1))
        return out

class MockBridge:
    """CH347 JTAG and SWD command processor.

    `taps` is ordered from the TAP nearest TDO to the one nearest TDI.
    """

    def __init__(self, taps=None, dap=None):
        self.dap = dap if dap is not None else MockDAP()
        if taps is None:
            taps = [MockTAP(0x4BA00477, 4, self.dap)]
        self.taps = taps
        self.tap_state = TLR
        self.jtag_init = None
        self.swd_init = None
        self.sequences = []
        self.requests = []
        self.swd_acks = deque()
        self.corrupt_read_parity = False
        self.write_parity_errors = 0

    def process(self, data):
        cmd = data[0]
        if cmd == 0xD0:
            self.jtag_init = data
            return bytes((0xD0, 0x01, 0x00, 0x00))
        elif cmd == 0xD2:
            return self._clock(data)
        elif cmd == 0xE5:
            self.swd_init = data
            return bytes((0xE5, 0x01, 0x00, 0x00))
        elif cmd == 0xE8:
            return self._swd_batch(data)
        return None

    # JTAG

    def _shift_chain(self, tdi):
        carry = tdi
        for tap in reversed(self.taps):
            carry = tap.shift(carry)
        return carry

    def _enter(self, state):
        self.tap_state = state
        for tap in self.taps:
            if state == TLR:
                tap.reset()
            elif state == CAPTURE_IR:
                tap.capture_ir()
            elif state == UPDATE_IR:
                tap.update_ir()
            elif state == CAPTURE_DR:
                tap.capture_dr()
            elif state == UPDATE_DR:
                tap.update_dr()

    def _clock(self, data):
        length = data[1] | (data[2] << 8)
        payload = data[3:]
        assert len(payload) == length and length % 2 == 0
        out = bytearray()
        for i in range(0, length, 2):
            low, high = payload[i], payload[i + 1]
            assert high == low | 0x01
            tms = (low >> 1) & 1
            tdi = (low >> 4) & 1
            tdo = 0
            if self.tap_state in (SHIFT_DR, SHIFT_IR):
                tdo = self._shift_chain(tdi)
            self._enter(TAP_TRANSITIONS[self.tap_state][tms])
            out.append((high & ~0x01) | tdo)
        count = len(out)
        return bytes((0xD2, count & 0xff, count >> 8)) + bytes(out)

    # SWD

    def _next_ack(self):
        return self.swd_acks.popleft() if self.swd_acks else SWD_ACK_OK

    @staticmethod
    def _header_ok(header):
        return (header & 0xc1) == 0x81 and ((header >> 5) & 1) == parity32((header >> 1) & 0xf)

    def _swd_read(self, header):
        if not self._header_ok(header):
            return bytes((0xA2, SWD_NO_ACK, 0xff, 0xff, 0xff, 0xff, 0x01))
        ack = self._next_ack()
        value = 0
        if ack == SWD_ACK_OK:
            addr = (header >> 1) & 0xc
            if header & 0x02:
                # Posted AP read: return the previous result, latch the new one.
                value = self.dap.rdbuff
                self.dap.ap_read(addr)
            else:
                value = self.dap.dp_read(addr)
        parity = parity32(value) ^ (1 if self.corrupt_read_parity else 0)
        return bytes((0xA2, ack)) + value.to_bytes(4, 'little') + bytes((parity,))

    def _swd_write(self, header, value, parity):
        if not self._header_ok(header):
            return bytes((0xA0, SWD_NO_ACK))
        ack = self._next_ack()
        if ack == SWD_ACK_OK:
            if parity != parity32(value):
                self.write_parity_errors += 1
            else:
                addr = (header >> 1) & 0xc
                if header & 0x02:
                    self.dap.ap_write(addr, value)
                else:
                    self.dap.dp_write(addr, value)
        return bytes((0xA0, ack))

    def _swd_batch(self, data):
        length = data[1] | (data[2] << 8)
        payload = data[3:]
        assert len(payload) == length
        out = bytearray()
        i = 0
        while i < length:
            sub = payload[i]
            if sub == 0xA2:
                assert payload[i + 1:i + 3] == b'\x22\x00'
                header = payload[i + 3]
                self.requests.append(header)
                out += self._swd_read(header)
                i += 4
            elif sub == 0xA0:
                assert payload[i + 1:i + 3] == b'\x29\x00'
                header = payload[i + 3]
                self.requests.append(header)
                value = int.from_bytes(payload[i + 4:i + 8], 'little')
                out += self._swd_write(header, value, payload[i + 8])
                i += 9
            elif sub == 0xA1:
                bit_length = payload[i + 1] | (payload[i + 2] << 8)
                nbytes = (bit_length + 7) // 8
                self.sequences.append((bytes(payload[i + 3:i + 3 + nbytes]), bit_length))
                out.append(0xA1)
                i += 3 + nbytes
            else:
                raise AssertionError(f"unknown SWD subcommand 0x{sub:02x}")
        return bytes((0xE8, len(out) & 0xff, len(out) >> 8)) + bytes(out)

class MockUSBDevice:
    """Stands in for a pyusb Device attached to a MockBridge."""

    idVendor = 0x1A86
    idProduct = 0x55DD
    manufacturer = "wch.cn"
    product = "USB To UART+JTAG"
    bus = 1
    address = 7

    def __init__(self, bridge=None, serial_number="CH347A1B2C3"):
        self.bridge = bridge if bridge is not None else MockBridge()
        self.serial_number = serial_number
        self.kernel_driver_active = False
        self.writes = []
        self.responses = deque()
        self._read_errors = deque()
        self._write_errors = deque()
        self.reads = 0

    def is_kernel_driver_active(self, interface):
        return self.kernel_driver_active

    def detach_kernel_driver(self, interface):
        self.kernel_driver_active = False

    def attach_kernel_driver(self, interface):
        self.kernel_driver_active = True

    def get_active_configuration(self):
        return None

    def schedule_read_error(self, exc, after=0):
        """Raise exc from the read following the next `after` successful ones."""
        self._read_errors.append([after, exc])

    def schedule_write_error(self, exc):
        self._write_errors.append(exc)

    def write(self, endpoint, data, timeout=None):
        assert endpoint == 0x06
        if self._write_errors:
            raise self._write_errors.popleft()
        data = bytes(data)
        self.writes.append(data)
        response = self.bridge.process(data)
        if response is not None:
            self.responses.append(response)
        return len(data)

    def read(self, endpoint, size, timeout=None):
        assert endpoint == 0x86
        if self._read_errors:
            pending = self._read_errors[0]
            if pending[0] == 0:
                self._read_errors.popleft()
                # The bridge's answer to the failed transfer is lost.
                if self.responses:
                    self.responses.popleft()
                raise pending[1]
            pending[0] -= 1
        if not self.responses:
            raise usb.core.USBTimeoutError("Operation timed out")
        self.reads += 1
        return array('B', self.responses.popleft()[:size])

def usb_timeout():
    return usb.core.USBTimeoutError("Operation timed out")

def usb_disconnect():
    return usb.core.USBError("No such device (it may have been disconnected)", errno=errno.ENODEV)

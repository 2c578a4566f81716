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

import pytest
from unittest.mock import Mock

from ch347link.core import exceptions
from ch347link.coresight import dap
from ch347link.coresight.dap import (
    AP_IDR,
    APRegister,
    DebugPort,
    DPRegister,
    JTAGAck,
    SWDAck,
    check_jtag_ack,
    check_swd_ack,
    make_select,
)

@pytest.fixture(scope='function', params=['swd', 'jtag'])
def dp(request, session):
    if request.param == 'swd':
        engine = session.swd
        engine.init()
        engine.jtag_to_swd()
        engine.idle()
    else:
        engine = session.jtag
        engine.init()
        engine.select_target(0)
    return DebugPort(engine)

class TestRegisterAddress:
    def test_a32(self):
        assert DPRegister(0x0).a32 == 0
        assert DPRegister(0xC).a32 == 3
        assert APRegister(0xFC).a32 == 3
        assert APRegister(0xFC).bank == 0xF

    def test_kind(self):
        assert APRegister(0x4).is_access_port
        assert not DPRegister(0x4).is_access_port
        assert APRegister(0x4) != DPRegister(0x4)
        assert DPRegister(0x8) == DPRegister(0x8)

    @pytest.mark.parametrize("offset", [0x1, 0x6, 0x100, -4])
    def test_invalid(self, offset):
        with pytest.raises(ValueError):
            DPRegister(offset)

class TestSelect:
    def test_make_select(self):
        assert make_select(0, 0xF) == 0x000000F0
        assert make_select(1, 0) == 0x01000000
        assert make_select(0xff, 0x1, 0x2) == 0xff000012

class TestAcks:
    def test_swd(self):
        check_swd_ack(SWDAck.OK)
        with pytest.raises(exceptions.TransferTimeoutError):
            check_swd_ack(SWDAck.WAIT)
        with pytest.raises(exceptions.TransferFaultError):
            check_swd_ack(SWDAck.FAULT)
        with pytest.raises(exceptions.TransferError):
            check_swd_ack(0b011)

    @pytest.mark.parametrize("ack", range(8))
    def test_jtag(self, ack):
        if ack == JTAGAck.OK_FAULT:
            check_jtag_ack(ack)
        else:
            with pytest.raises(exceptions.TransferError):
                check_jtag_ack(ack)

class TestDebugPort:
    def test_read_idr(self, dp):
        idr = dp.read_idr()
        assert idr.idr == 0x2BA01477
        assert idr.partno == 0xBA
        assert idr.version == 1
        assert idr.revision == 2
        assert not idr.mindp

    def test_power_up(self, dp, bridge):
        dp.power_up_debug()
        assert bridge.dap.ctrl_stat & (dap.CDBGPWRUPACK | dap.CSYSPWRUPACK) == \
            dap.CDBGPWRUPACK | dap.CSYSPWRUPACK

    def test_power_up_timeout(self):
        engine = Mock()
        engine.read_dp.return_value = 0
        port = DebugPort(engine, power_timeout=0.0)
        with pytest.raises(exceptions.DebugError):
            port.power_up_debug()

    def test_power_timeout_option(self, session):
        session.options.set('dp.power_timeout', 0.25)
        assert DebugPort(session.swd)._power_timeout == 0.25

    def test_read_ap(self, dp, bridge):
        assert dp.read_ap(0, AP_IDR) == 0x24770011
        assert bridge.dap.select == 0x000000F0

    def test_write_ap(self, dp, bridge):
        dp.write_ap(1, 0x04, 0x20000000)
        assert bridge.dap.ap_registers[(1, 0x04)] == 0x20000000
        assert bridge.dap.select == 0x01000000

    def test_select_written_every_time(self, dp, bridge):
        dp.read_ap(0, AP_IDR)
        bridge.dap.select = 0
        dp.read_ap(0, AP_IDR)
        assert bridge.dap.select == 0x000000F0

    def test_clear_sticky_errors(self, dp, bridge):
        dp.clear_sticky_errors()
        assert bridge.dap.aborts[-1] == 0x1E

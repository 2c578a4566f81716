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

class Error(RuntimeError):
    """! @brief Parent of all errors ch347link can raise"""
    pass

class InternalError(Error):
    """! @brief Internal consistency or logic error.

    This error indicates that something has happened that shouldn't be possible, usually a caller
    driving the library in a way it doesn't support.
    """
    pass

class BufferOverflowError(InternalError):
    """! @brief Queued commands do not fit in the bridge's fixed-size packet buffer."""
    pass

class JTAGStateError(InternalError):
    """! @brief A JTAG shifter operation was requested from a TAP state that doesn't allow it."""
    pass

class ProbeError(Error):
    """! @brief Error communicating with the debug bridge"""
    pass

class ProbeDisconnected(ProbeError):
    """! @brief The connection to the debug bridge was lost"""
    pass

class ProbeTimeoutError(ProbeError):
    """! @brief A USB transfer to or from the debug bridge did not complete in time.

    The shift state inside the bridge and the target is undefined after this error. The
    JTAG TAP must be reset before it is used again.
    """
    pass

class TargetError(Error):
    """! @brief An error that happens on the target"""
    pass

class DebugError(TargetError):
    """! @brief Error controlling target debug resources"""
    pass

class TAPIndexError(DebugError, IndexError):
    """! @brief Selected TAP index is outside of the discovered scan chain."""
    pass

class ChainScanError(DebugError):
    """! @brief JTAG scan chain discovery did not find the end of the chain."""
    pass

class TransferError(DebugError):
    """! @brief Error ocurred with a transfer over SWD or JTAG.

    The acknowledge code returned by the target, if there was one, may be passed to the
    constructor as the 'ack' keyword argument. It is included in the string description of
    the exception.
    """
    def __init__(self, *args, **kwargs):
        super(TransferError, self).__init__(*args)
        self._ack = kwargs.get('ack', None)

    @property
    def ack(self):
        return self._ack

    def __str__(self):
        desc = super(TransferError, self).__str__()
        if self._ack is not None:
            if desc:
                desc += " "
            desc += "(ack 0b{:03b})".format(self._ack)
        return desc

class TransferTimeoutError(TransferError):
    """! @brief The target answered an SWD or JTAG transfer with WAIT"""
    pass

class TransferFaultError(TransferError):
    """! @brief The target answered an SWD or JTAG transfer with FAULT"""
    pass

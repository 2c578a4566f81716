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

import errno
import logging
import platform
from typing import (List, Optional)

import libusb_package
import usb.core
import usb.util

from ..core import exceptions
from ..utility.conversion import format_hex_bytes
from . import common

LOG = logging.getLogger(__name__)

TRACE = LOG.getChild("trace")
TRACE.setLevel(logging.CRITICAL)

## Error numbers reported by libusb when the device went away mid-session.
DISCONNECT_ERRNOS = (errno.ENODEV, errno.ENXIO, errno.EPIPE)

class CH347USBInterface:
    """! @brief Raw bulk pipe to the JTAG/SWD function of a CH347 bridge.

    The bridge exposes its debug engine as a vendor interface with one bulk OUT and one bulk IN
    endpoint. This class only moves bytes: every write() is a single OUT transfer and every
    read() a single IN transfer, both bounded by the configured timeout. It performs no framing
    and never retries.
    """

    ## WCH USB vendor ID and the product IDs of the CH347T/CH347F variants.
    USB_VID_PID_LIST = [
        (0x1A86, 0x55DE),
        (0x1A86, 0x55DD),
        (0x1A86, 0x55E8),
        ]

    ## Interface number of the JTAG/SWD function.
    DEFAULT_INTERFACE_NUMBER = 4

    EP_OUT = 0x06
    EP_IN = 0x86

    ## Size of the bridge's bulk packets, which is also the largest command it accepts.
    PACKET_SIZE = 512

    ## Default bulk transfer timeout in seconds.
    DEFAULT_TIMEOUT = 0.5

    @classmethod
    def _usb_match(cls, dev):
        try:
            is_ch347 = (dev.idVendor, dev.idProduct) in cls.USB_VID_PID_LIST

            # Reading the active config fails with EACCES on Linux without a udev rule. Finding
            # out here gives a clear log message instead of an obscure failure during open().
            if is_ch347 and platform.system() != "Windows":
                dev.get_active_configuration()

            return is_ch347
        except usb.core.USBError as error:
            if error.errno == errno.EACCES and platform.system() == "Linux" \
                and common.should_show_libusb_device_error((dev.idVendor, dev.idProduct)):
                LOG.warning("%s while trying to get the CH347 USB device configuration "
                   "(VID=%04x PID=%04x). This can probably be remedied with a udev rule.",
                   error, dev.idVendor, dev.idProduct)
            return False
        except (IndexError, NotImplementedError, ValueError):
            return False

    @classmethod
    def get_all_connected_devices(cls) -> List["CH347USBInterface"]:
        """! @brief Return an interface object for every attached CH347 bridge."""
        try:
            devices = libusb_package.find(find_all=True, custom_match=cls._usb_match)
        except usb.core.NoBackendError:
            common.show_no_libusb_warning()
            return []

        intf_list = []
        for dev in devices:
            try:
                intf_list.append(cls(dev))
            except (ValueError, usb.core.USBError, IndexError, NotImplementedError) as error:
                LOG.debug("skipping CH347 device that could not be queried: %s", error)

        return intf_list

    def __init__(self, dev, interface_number: int = DEFAULT_INTERFACE_NUMBER,
            timeout: float = DEFAULT_TIMEOUT) -> None:
        self._dev = dev
        self._interface_number = interface_number
        self._timeout = timeout
        self._kernel_driver_was_attached = False
        self._closed = True

        # Descriptor strings are read with the device opened implicitly by pyusb, so release it
        # again right away.
        try:
            self._serial_number = self._dev.serial_number
            self._vendor_name = self._dev.manufacturer
            self._product_name = self._dev.product
        finally:
            usb.util.dispose_resources(self._dev)

    @property
    def serial_number(self) -> Optional[str]:
        return self._serial_number

    @property
    def unique_id(self) -> str:
        """! @brief Identifier used to match per-probe config and the `probe_id` option."""
        if self._serial_number:
            return self._serial_number
        return "{:04x}:{:04x}@{}:{}".format(self._dev.idVendor, self._dev.idProduct,
                getattr(self._dev, 'bus', 0), getattr(self._dev, 'address', 0))

    @property
    def vendor_name(self) -> Optional[str]:
        return self._vendor_name

    @property
    def product_name(self) -> Optional[str]:
        return self._product_name

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def interface_number(self) -> int:
        return self._interface_number

    @interface_number.setter
    def interface_number(self, value: int) -> None:
        assert self._closed
        self._interface_number = value

    @property
    def timeout(self) -> float:
        """! @brief Bulk transfer timeout in seconds."""
        return self._timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        self._timeout = value

    @property
    def _timeout_ms(self) -> int:
        return int(self._timeout * 1000)

    def open(self) -> None:
        assert self._closed

        self._kernel_driver_was_attached = False
        try:
            if self._dev.is_kernel_driver_active(self._interface_number):
                LOG.debug("Detaching kernel driver of interface %d from CH347 (VID=%04x PID=%04x).",
                        self._interface_number, self._dev.idVendor, self._dev.idProduct)
                self._dev.detach_kernel_driver(self._interface_number)
                self._kernel_driver_was_attached = True
        except usb.core.USBError as e:
            LOG.warning("USB kernel driver detach failed ([%s] %s). The attached driver may "
                    "interfere with bridge operations.", e.errno, e.strerror)
        except NotImplementedError:
            LOG.debug("USB kernel driver detaching is not supported on this platform.")

        try:
            usb.util.claim_interface(self._dev, self._interface_number)
        except usb.core.USBError as exc:
            raise self._convert_usb_error(exc, "unable to claim interface") from exc

        try:
            self._flush_rx()
        except exceptions.ProbeError:
            self._release()
            raise
        self._closed = False

    def close(self) -> None:
        assert not self._closed
        self._closed = True
        self._release()

    def _release(self) -> None:
        usb.util.release_interface(self._dev, self._interface_number)
        if self._kernel_driver_was_attached:
            try:
                self._dev.attach_kernel_driver(self._interface_number)
            except usb.core.USBError as e:
                LOG.debug("USB kernel driver reattach failed: %s", e)
        usb.util.dispose_resources(self._dev)

    def _flush_rx(self) -> None:
        # Drain responses left over from an aborted session by reading until timeout.
        try:
            while True:
                data = self._dev.read(self.EP_IN, self.PACKET_SIZE, 1)
                if TRACE.isEnabledFor(logging.DEBUG):
                    TRACE.debug("  USB flushed (%d) %s", len(data), format_hex_bytes(data))
        except usb.core.USBTimeoutError:
            pass
        except usb.core.USBError as exc:
            raise self._convert_usb_error(exc, "flushing receive endpoint") from exc

    @staticmethod
    def _convert_usb_error(exc: usb.core.USBError, context: str) -> exceptions.ProbeError:
        """! @brief Map a pyusb error onto the probe exception hierarchy."""
        if isinstance(exc, usb.core.USBTimeoutError):
            return exceptions.ProbeTimeoutError(f"USB timeout {context}: {exc}")
        elif exc.errno in DISCONNECT_ERRNOS:
            return exceptions.ProbeDisconnected(f"CH347 disconnected {context}: {exc}")
        else:
            return exceptions.ProbeError(f"USB error {context}: {exc}")

    def write(self, data) -> None:
        """! @brief Send one bulk OUT transfer.

        @exception ProbeTimeoutError The transfer did not complete before the timeout. It is not
            known how much of the data reached the bridge.
        @exception ProbeDisconnected The bridge is gone.
        """
        assert not self._closed
        if TRACE.isEnabledFor(logging.DEBUG):
            TRACE.debug("  USB OUT> (%d) %s", len(data), format_hex_bytes(data))
        try:
            count = self._dev.write(self.EP_OUT, data, self._timeout_ms)
        except usb.core.USBError as exc:
            raise self._convert_usb_error(exc, "writing to bridge") from exc
        if count != len(data):
            raise exceptions.ProbeError(f"short USB write to bridge (sent {count} of {len(data)} bytes)")

    def read(self, size: int) -> bytes:
        """! @brief Receive one bulk IN transfer of up to _size_ bytes.

        Fewer bytes than requested may be returned. Callers check the length against what the
        command they sent should produce.
        """
        assert not self._closed
        if TRACE.isEnabledFor(logging.DEBUG):
            TRACE.debug("  USB IN < (req %d bytes)", size)
        try:
            data = bytes(self._dev.read(self.EP_IN, size, self._timeout_ms))
        except usb.core.USBError as exc:
            raise self._convert_usb_error(exc, "reading from bridge") from exc
        if TRACE.isEnabledFor(logging.DEBUG):
            TRACE.debug("  USB IN < (%d) %s", len(data), format_hex_bytes(data))
        return data

    def __repr__(self):
        return "<{} @ {:#x} vid={:#06x} pid={:#06x} sn={}>".format(
            self.__class__.__name__, id(self),
            self._dev.idVendor, self._dev.idProduct, self.serial_number)

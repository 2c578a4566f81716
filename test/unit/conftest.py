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
from unittest import mock

import usb.util

from ch347link.core.session import Session
from ch347link.probe.usb import CH347USBInterface
from .mockbridge import (MockBridge, MockUSBDevice)

@pytest.fixture(scope='function')
def usb_util(monkeypatch):
    """Replace the pyusb interface management calls, which need a real backend."""
    patched = mock.Mock()
    monkeypatch.setattr(usb.util, 'claim_interface', patched.claim_interface)
    monkeypatch.setattr(usb.util, 'release_interface', patched.release_interface)
    monkeypatch.setattr(usb.util, 'dispose_resources', patched.dispose_resources)
    return patched

@pytest.fixture(scope='function')
def bridge():
    return MockBridge()

@pytest.fixture(scope='function')
def device(bridge):
    return MockUSBDevice(bridge)

@pytest.fixture(scope='function')
def interface(device, usb_util):
    return CH347USBInterface(device)

@pytest.fixture(scope='function')
def session(interface, tmp_path):
    with Session(interface, no_config=True, project_dir=str(tmp_path)) as s:
        yield s

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

import os
from pathlib import Path
from setuptools import (setup, find_packages)

# Get the directory containing this setup.py so the build works from any working directory.
SCRIPT_DIR = Path(__file__).parent.resolve()
os.chdir(SCRIPT_DIR)

setup(
    name="ch347link",
    version="0.1.0",
    description="JTAG and SWD debug access through the WCH CH347 USB bridge",
    long_description="Protocol engine for the WCH CH347 USB debug bridge: JTAG scan chain "
        "discovery and TAP access, batched SWD register transfers, and ADIv5 DP/AP register access.",
    license="Apache-2.0",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Topic :: Software Development :: Debuggers",
        "Topic :: Software Development :: Embedded Systems",
    ],
    python_requires=">=3.8",
    packages=find_packages(include=["ch347link", "ch347link.*"]),
    install_requires=[
        "libusb-package>=1.0,<2.0",
        "pyusb>=1.2.1,<2.0",
        "pyyaml>=6.0,<7.0",
        "typing-extensions>=4.0,<5.0",
    ],
    extras_require={
        "test": [
            "pytest>=6.2",
        ],
    },
)

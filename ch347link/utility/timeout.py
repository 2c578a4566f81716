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

from time import (time, sleep)
from typing import Optional

class Timeout:
    """! @brief Deadline tracker used by polling loops.

    Use as a context manager, with check() as the predicate of a while loop and a break for the
    success case. The else clause of the loop then runs only when the deadline passed.

    @code
    with Timeout(5.0, sleeptime=0.01) as t_o:
        while t_o.check():
            if ctrl_stat() & CDBGPWRUPACK:
                break
        else:
            raise DebugError("timed out")
    @endcode

    A timeout of None never expires.
    """

    def __init__(self, timeout: Optional[float], sleeptime: float = 0) -> None:
        """! @brief Constructor.
        @param self
        @param timeout Seconds until the deadline, or None for no deadline.
        @param sleeptime Seconds that check() sleeps between polls, starting with the second call.
        """
        self._timeout = timeout
        self._sleeptime = sleeptime
        self._start = -1.0
        self._timed_out = False
        self._is_first_check = True

    def __enter__(self) -> "Timeout":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        pass

    def start(self) -> None:
        """! @brief Restart the deadline from the current time."""
        self._start = time()

    @property
    def elapsed(self) -> float:
        return time() - self._start

    def check(self, autosleep: bool = True) -> bool:
        """! @brief Test the deadline, sleeping between polls.

        @retval True The deadline has not passed yet.
        @retval False The deadline passed and the loop should exit.
        """
        if (self._timeout is not None) and (self.elapsed > self._timeout):
            self._timed_out = True
        elif (not self._is_first_check) and autosleep and self._sleeptime:
            sleep(self._sleeptime)
        self._is_first_check = False
        return not self._timed_out

    @property
    def did_time_out(self) -> bool:
        """! @brief Whether the deadline has passed as of this access."""
        self.check(autosleep=False)
        return self._timed_out

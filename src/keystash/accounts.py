#!/usr/bin/env python3
# Copyright 2023 Cisco Systems, Inc. and its affiliates
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
#
# SPDX-License-Identifier: Apache-2.0
"""Account lookups"""

import os
import pwd
from pathlib import Path
from typing import Optional, Tuple

__all__ = ["AccountDirectory"]

class AccountDirectory():
    """Looks up local accounts in the password database."""

    def exists(self, account: str) -> bool:
        """True if the account exists on this system."""
        return self._entry(account) is not None

    def home(self, account: str) -> Optional[Path]:
        """Home directory of the account, or None if there is no such account."""
        entry = self._entry(account)
        if entry is None:
            return None
        return Path(entry.pw_dir)

    def ids(self, account: str) -> Optional[Tuple[int, int]]:
        """(uid, gid) of the account, or None if there is no such account."""
        entry = self._entry(account)
        if entry is None:
            return None
        return entry.pw_uid, entry.pw_gid

    @staticmethod
    def is_privileged() -> bool:
        """True if running as root."""
        return os.geteuid() == 0

    @staticmethod
    def _entry(account: str) -> Optional[pwd.struct_passwd]:
        try:
            return pwd.getpwnam(account)
        except KeyError:
            return None

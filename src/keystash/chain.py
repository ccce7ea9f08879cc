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
"""Chain file parsing and one-level chain resolution"""

from typing import List, Iterable
from .config import CHAIN_FILE
from .store import KeychainStore

__all__ = ["ChainResolver", "parse_chain", "render_chain"]

def parse_chain(content: bytes) -> List[str]:
    """Account names listed in a chain file, in file order. Blank lines and
    lines starting with # are ignored."""
    names = []
    for line in content.decode("utf-8", errors="replace").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            names.append(line)
    return names

def render_chain(names: Iterable[str]) -> bytes:
    """Chain file content for names. An empty list gives an empty blob."""
    return "".join(f"{name}\n" for name in names).encode("utf-8")

class ChainResolver():
    """Expands a keychain's chain file into the accounts it chains to. The
    chained keychains' own chain files are never read, so a chain is at most
    one level deep and cannot cycle."""

    def __init__(self, store: KeychainStore):
        self.store = store

    def resolve(self, account: str) -> List[str]:
        """Chained account names of the account's keychain, in order. Empty if
        the keychain or its chain file is missing."""
        revision = self.store.resolve_ref(account)
        if revision is None:
            return []

        content = self.store.read_blob(revision, CHAIN_FILE)
        if content is None:
            return []

        return parse_chain(content)

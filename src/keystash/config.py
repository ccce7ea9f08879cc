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
"""Runtime settings for Keystash"""

import os
import getpass
from pathlib import Path
from typing import Optional, Tuple, Mapping
from .types import StrPath

__all__ = ["Settings"]

DEFAULT_STORE_DIR = "~/.keystash"
DEFAULT_REF_PREFIX = "keychain/"

# Public key files read from ~/.ssh by "import"
DEFAULT_KEY_FILES = ("id_rsa.pub", "id_ed25519.pub")

CHAIN_FILE = ".chain"
CHECKSUM_SUFFIX = ".sha256"
AUTHORIZED_KEYS = Path(".ssh", "authorized_keys")

class Settings():
    """Store location and naming conventions. Values come from the defaults
    above, then the environment (KEYSTASH_DIR, KEYSTASH_REF_PREFIX), then
    whatever the caller passes explicitly."""

    def __init__(self, store_dir: Optional[StrPath]=None, ref_prefix: Optional[str]=None,
                 key_files: Tuple[str, ...]=DEFAULT_KEY_FILES, operator: Optional[str]=None,
                 environ: Optional[Mapping[str, str]]=None):

        if environ is None:
            environ = os.environ

        self.store_dir = Path(os.path.expanduser(store_dir or environ.get("KEYSTASH_DIR") or DEFAULT_STORE_DIR))
        self.ref_prefix = ref_prefix or environ.get("KEYSTASH_REF_PREFIX") or DEFAULT_REF_PREFIX
        self.key_files = tuple(key_files)
        self.operator = operator or getpass.getuser()

        if "/" in self.ref_prefix.rstrip("/") or ".." in self.ref_prefix:
            raise ValueError(f"Unusable ref prefix {self.ref_prefix!r}")

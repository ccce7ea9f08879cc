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
"""Utility functions and classes"""

import os
import re
import hashlib
import logging
import tempfile
import subprocess
import unicodedata
import urllib.parse
from pathlib import Path
from typing import Optional, IO, Type, List
from types import TracebackType
from .types import StrPath


# OpenSSH formatted pubkey pattern, as used for scanning files for keys. Searched
# rather than anchored so authorized_keys lines with leading options still match.
PUBLIC_KEY_PATTERN = re.compile(
    rb"(sk\-)?"
    rb"(ssh|ecdsa)-[a-z0-9\.@\-]{0,80}"
    rb"\s+[a-zA-Z0-9+=/]{68,3000}"
)

PRIVATE_KEY_PATTERN = re.compile(rb"-{5}BEGIN.{0,12}PRIVATE KEY-{5}")

def _run_keygen_list(content: bytes) -> Optional[str]:
    """Runs ssh-keygen -l against content written to a temporary file.
    Returns its stdout, or None if ssh-keygen rejected the content or could
    not be run at all."""

    if not content.strip():
        return None

    with tempfile.NamedTemporaryFile(mode="wb") as key_file:
        key_file.write(content)
        key_file.flush()

        try:
            keygen_process = subprocess.run(["ssh-keygen", "-l", "-f", key_file.name], capture_output=True, text=True, check=False)
        except OSError as err:
            logging.warning("Unable to run ssh-keygen: %s", err)
            return None

    if keygen_process.returncode != 0:
        return None

    return keygen_process.stdout

def is_public_key(content: bytes) -> bool:
    """Return True if every line of content is a public key or a comment and
    ssh-keygen accepts it. Private keys are always rejected."""

    if PRIVATE_KEY_PATTERN.search(content):
        return False

    lines = [line.strip() for line in content.splitlines()]
    key_lines = [line for line in lines if line and not line.startswith(b"#")]
    if not key_lines or not all(PUBLIC_KEY_PATTERN.search(line) for line in key_lines):
        return False

    return _run_keygen_list(content) is not None

def get_fingerprints(content: bytes) -> List[str]:
    """Returns the SHA256 fingerprints (without key size or comments) of every
    key in content, in file order. Empty if the content is not a key."""

    output = _run_keygen_list(content)
    if output is None:
        return []

    return [" ".join(line.split(" ")[1:2]) for line in output.splitlines() if line.strip()]

def sha256_hexdigest(content: bytes) -> str:
    """Hex SHA256 digest of content."""
    return hashlib.sha256(content).hexdigest()

def safe_entry_name(target_name: str) -> str:
    """Sanitizes target_name for use as a keychain entry name. The result only
    contains [a-zA-Z0-9._-] and never starts with a dot, so it cannot collide
    with the chain file."""

    # URL decode
    name = _recursive_decode(target_name)

    # Normalize
    name = unicodedata.normalize("NFKD", name)

    # Convert path separators into underscores
    name = name.replace("/", "_").replace("\\", "_")

    # Convert whitespace into hyphens
    name = re.sub(r"[\s]", "-", name)

    # Discard most characters
    name = re.sub(r"[^a-zA-Z0-9._-]", "", name)

    name = name.lstrip(".")

    # Assign a default name if nothing left
    if name == "":
        name = "empty_name"

    return name

def _recursive_decode(uri: str) -> str:
    """Apply urllib.parse.unquote to uri until it can't be decoded any
    further."""
    decoded = urllib.parse.unquote(uri)

    while decoded != uri:
        uri = decoded
        decoded = urllib.parse.unquote(uri)

    return decoded

def atomic_write(path: StrPath, content: bytes, mode: int=0o644) -> None:
    """Replace the file at path with content in a single rename."""
    with AtomicWriter(path, mode=mode) as outf:
        outf.write(content)

class AtomicWriter():
    """Opens a temporary file next to "path" for binary writing. On a clean
    exit the data is flushed to disk and the temporary file is renamed over
    "path"; on an exception it is removed and "path" is left untouched.
    Creates the parent directory mode 0700 if it doesn't exist."""

    def __init__(self, path: StrPath, mode: int=0o644):
        self.path = Path(path)
        self.mode = mode
        self.file_handle: Optional[IO[bytes]] = None
        self.temp_name: Optional[str] = None

    def __enter__(self) -> IO[bytes]:

        os.makedirs(self.path.parent, mode=0o700, exist_ok=True)

        fd, self.temp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        os.fchmod(fd, self.mode)
        self.file_handle = os.fdopen(fd, "wb")
        return self.file_handle

    def __exit__(self, exception_type: Optional[Type[BaseException]],
                 exception_value: Optional[BaseException], traceback:
                 Optional[TracebackType]) -> None:

        assert self.file_handle is not None and self.temp_name is not None

        try:
            if exception_type is None:
                self.file_handle.flush()
                os.fsync(self.file_handle.fileno())
            self.file_handle.close()

            if exception_type is None:
                os.replace(self.temp_name, self.path)
        finally:
            if os.path.exists(self.temp_name):
                os.unlink(self.temp_name)

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
"""Renders keychains into authorized_keys files and installs them"""

import os
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Tuple, Dict
from .types import StrPath, DeployedArtifact
from .config import Settings, CHAIN_FILE, CHECKSUM_SUFFIX, AUTHORIZED_KEYS
from .errors import KeystashError, NotFound, AccessDenied
from .store import KeychainStore
from .accounts import AccountDirectory
from .chain import ChainResolver
from .keystash_utility import AtomicWriter, sha256_hexdigest

__all__ = ["DeploymentEngine", "ArtifactInstaller"]

class ArtifactInstaller():
    """Atomically replaces an authorized_keys file and its checksum sidecar.
    When running as root the files are handed over to the owning account."""

    def __init__(self, accounts: AccountDirectory):
        self.accounts = accounts

    def install(self, content: bytes, path: StrPath, owner: Optional[str]=None) -> str:
        """Writes content to path and the sha256sum style checksum to
        path + CHECKSUM_SUFFIX. Returns the hex checksum."""
        path = Path(path)
        checksum = sha256_hexdigest(content)
        sidecar = path.with_name(path.name + CHECKSUM_SUFFIX)

        try:
            with AtomicWriter(path, mode=0o600) as outf:
                outf.write(content)
            with AtomicWriter(sidecar, mode=0o600) as outf:
                outf.write(f"{checksum}  {path.name}\n".encode("utf-8"))
        except OSError as err:
            raise AccessDenied(f"Unable to write {path}: {err.strerror}") from err

        if owner is not None and self.accounts.is_privileged():
            self._set_ownership(path, sidecar, owner)

        return checksum

    def _set_ownership(self, path: Path, sidecar: Path, owner: str) -> None:
        ids = self.accounts.ids(owner)
        if ids is None:
            logging.warning("Not changing ownership of %s, no account named %s", path, owner)
            return

        uid, gid = ids
        try:
            for target in (path.parent, path, sidecar):
                os.chown(target, uid, gid)
            os.chmod(path.parent, 0o700)
        except OSError as err:
            raise AccessDenied(f"Unable to change ownership of {path}: {err.strerror}") from err
        logging.debug("Changed ownership of %s to %s", path, owner)

class DeploymentEngine():
    """Flattens a keychain and the keychains it chains to into one
    authorized_keys file. Everything is rendered in memory before anything
    is written, so a failed deploy leaves the previous file in place."""

    def __init__(self, store: KeychainStore, settings: Settings, accounts: Optional[AccountDirectory]=None,
                 installer: Optional[ArtifactInstaller]=None):
        self.store = store
        self.settings = settings
        self.accounts = accounts or AccountDirectory()
        self.installer = installer or ArtifactInstaller(self.accounts)
        self.resolver = ChainResolver(store)

    def _render_entries(self, revision: str) -> List[bytes]:
        sections = []
        for name, content in self.store.read_tree(revision) or []:
            if name == CHAIN_FILE:
                continue
            if content and not content.endswith(b"\n"):
                content += b"\n"
            sections.append(f"# {name}\n".encode("utf-8") + content + b"\n")
        return sections

    def render(self, keychain: str, target: Optional[str]=None,
               now: Optional[datetime]=None) -> Tuple[bytes, str, List[str]]:
        """Returns the artifact content, the keychain revision it was built
        from, and the chained accounts that were included."""
        target = target or keychain
        revision = self.store.resolve_ref(keychain)
        if revision is None:
            raise NotFound(f"No keychain named {keychain}")

        now = now or datetime.now(timezone.utc)
        header = (f"#### keystash {self.store.short_revision_id(revision)} keychain {keychain} "
                  f"deployed by {self.settings.operator} for {target} at {now.strftime('%Y-%m-%dT%H:%M:%SZ')}\n\n")

        parts = [header.encode("utf-8")]
        parts.extend(self._render_entries(revision))

        included = []
        for account in self.resolver.resolve(keychain):
            chained_revision = self.store.resolve_ref(account)
            if chained_revision is None:
                logging.info("Omitting %s from %s, no keychain by that name", account, keychain)
                continue

            included.append(account)
            parts.append(f"### chained {account} at {self.store.short_revision_id(chained_revision)}\n\n".encode("utf-8"))
            parts.extend(self._render_entries(chained_revision))

        return b"".join(parts), revision, included

    def destination(self, target: str) -> Path:
        """authorized_keys path of the target account."""
        home = self.accounts.home(target)
        if home is None:
            raise NotFound(f"No account named {target}")
        return home / AUTHORIZED_KEYS

    def deploy(self, keychain: str, target: Optional[str]=None, output: Optional[StrPath]=None) -> DeployedArtifact:
        """Render keychain and install it as target's authorized_keys, or at
        output if given. target defaults to the keychain's own account."""
        target = target or keychain
        content, revision, included = self.render(keychain, target)
        path = Path(os.path.expanduser(output)) if output else self.destination(target)

        checksum = self.installer.install(content, path, owner=None if output else target)
        logging.info("Deployed keychain %s at %s to %s", keychain, self.store.short_revision_id(revision), path)

        return {
            "keychain": keychain,
            "target": target,
            "revision": revision,
            "chained": included,
            "content": content,
            "checksum": checksum,
            "path": str(path),
        }

    def deploy_all(self) -> Tuple[List[DeployedArtifact], Dict[str, str]]:
        """Deploy every keychain to its own account. A failure for one account
        is logged and reported without stopping the others."""
        deployed = []
        failures = {}
        for account in self.store.list_refs():
            try:
                deployed.append(self.deploy(account))
            except KeystashError as err:
                logging.error("Unable to deploy %s: %s", account, err)
                failures[account] = str(err)
        return deployed, failures

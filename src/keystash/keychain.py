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
"""Keychain model and mutation operations"""

import os
import re
import socket
import logging
from pathlib import Path
from typing import Optional, List, Tuple, Callable
from .types import StagedBlobs
from .config import Settings, CHAIN_FILE, AUTHORIZED_KEYS
from .errors import NotFound, PreconditionFailed, ValidationFailed, AccessDenied
from .store import KeychainStore
from .accounts import AccountDirectory
from .chain import parse_chain, render_chain
from .keystash_utility import is_public_key, safe_entry_name

__all__ = ["KeyChain", "KeyChainManager", "WorkingContext"]

ACCOUNT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._@-]*$")

class WorkingContext():
    """The keychain a mutation targets, the revision it started from, and the
    blobs staged for the single commit that ends the mutation."""

    def __init__(self, account: str, base_revision: str):
        self.account = account
        self.base_revision = base_revision
        self.staged: StagedBlobs = {}

    def stage(self, name: str, content: Optional[bytes]) -> None:
        """Stage new content for name, or its removal if content is None."""
        self.staged[name] = content

    def __repr__(self):
        return f"WorkingContext(account={self.account!r}, base_revision={self.base_revision!r}, staged={sorted(self.staged)!r})"

class KeyChain():
    """Read-only view of one account's keychain at its current tip."""

    def __init__(self, store: KeychainStore, account: str):
        self.store = store
        self.account = account
        self.revision = store.resolve_ref(account)

    def exists(self) -> bool:
        """True if the account has a keychain."""
        return self.revision is not None

    def entries(self) -> List[Tuple[str, bytes]]:
        """(name, content) of every key entry, in store listing order."""
        if self.revision is None:
            return []
        return [(name, content) for name, content in self.store.read_tree(self.revision) or []
                if name != CHAIN_FILE]

    def chain_content(self) -> Optional[bytes]:
        """Raw chain file, or None if missing."""
        if self.revision is None:
            return None
        return self.store.read_blob(self.revision, CHAIN_FILE)

    def chain(self) -> List[str]:
        """Accounts listed in the chain file."""
        return parse_chain(self.chain_content() or b"")

class KeyChainManager():
    """Creates and edits keychains. Every mutation follows the same steps:
    refuse if the working tree is dirty, read and validate all input, switch
    to the target keychain with ensure(), stage blobs on the returned
    WorkingContext, and commit() once."""

    def __init__(self, store: KeychainStore, settings: Settings, accounts: Optional[AccountDirectory]=None,
                 validator: Callable[[bytes], bool]=is_public_key, hostname: Optional[str]=None):
        self.store = store
        self.settings = settings
        self.accounts = accounts or AccountDirectory()
        self.validator = validator
        self.hostname = hostname or socket.gethostname().split(".")[0]

    @property
    def operator(self) -> str:
        """The account performing the operation."""
        return self.settings.operator

    def keychain(self, account: str) -> KeyChain:
        """Current view of the account's keychain."""
        return KeyChain(self.store, account)

    def _check_store(self) -> None:
        if not self.store.exists():
            raise NotFound(f"No keychain store at {self.store.root}, run 'keystash init' first")

    @staticmethod
    def _check_account_name(account: str) -> None:
        if not ACCOUNT_NAME_PATTERN.match(account or ""):
            raise PreconditionFailed(f"Invalid account name {account!r}")

    def _check_clean(self) -> None:
        """Refuse to continue while the working tree has local edits."""
        self._check_store()
        changes = self.store.worktree_changes()
        if changes:
            raise PreconditionFailed(f"Working tree {self.store.worktree} has uncommitted or untracked changes: {', '.join(changes)}")

    def entry_name(self, account: str, filename: str) -> str:
        """Name for a key entry contributed by account from filename. If the
        operator is adding on behalf of someone else, that is recorded too."""
        parts = [self.hostname]
        if self.operator != account:
            parts.append(f"{self.operator}-added")
        parts.extend([account, os.path.basename(filename)])
        return safe_entry_name("-".join(parts))

    def ensure(self, account: str) -> WorkingContext:
        """Switch to the account's keychain, creating it with an empty chain
        file if it doesn't exist yet."""
        self._check_account_name(account)
        self._check_clean()

        revision = self.store.resolve_ref(account)
        if revision is None:
            revision = self.store.create_orphan_ref(account, {CHAIN_FILE: b""},
                                                    f"Create keychain {account}", self.operator)
            logging.info("Created keychain %s", account)

        self.store.checkout(account)
        return WorkingContext(account, revision)

    def commit(self, context: WorkingContext, message: str) -> str:
        """Write everything staged on context as one revision. Nothing is
        written if the tree would not change."""
        tip = self.store.resolve_ref(context.account)
        if tip != context.base_revision:
            raise PreconditionFailed(f"Keychain {context.account} changed while it was being edited")

        revision = self.store.write_blobs(context.account, context.staged, message, self.operator)
        if revision is None:
            raise NotFound(f"No keychain named {context.account}")

        if revision == tip:
            logging.info("Keychain %s unchanged", context.account)
        else:
            logging.info("Keychain %s is now at %s: %s", context.account,
                         self.store.short_revision_id(revision), message)

        self.store.checkout(context.account)
        context.base_revision = revision
        context.staged = {}
        return revision

    def new(self, account: str) -> str:
        """Create an empty keychain for account."""
        self._check_account_name(account)
        self._check_store()
        if self.store.resolve_ref(account) is not None:
            raise PreconditionFailed(f"Keychain {account} already exists")
        return self.ensure(account).base_revision

    def _read_key_file(self, path: Path) -> bytes:
        try:
            with open(path, "rb") as inf:
                return inf.read()
        except PermissionError as err:
            raise AccessDenied(f"Unable to read {path}: {err.strerror}") from err
        except FileNotFoundError as err:
            raise NotFound(f"{path} does not exist") from err
        except OSError as err:
            raise AccessDenied(f"Unable to read {path}: {err.strerror}") from err

    def import_keys(self, source: str, target: Optional[str]=None) -> str:
        """Add the source account's default public key files to target, which
        defaults to the source account's own keychain."""
        target = target or source
        self._check_account_name(source)
        self._check_clean()

        home = self.accounts.home(source)
        if home is None:
            raise NotFound(f"No account named {source}")

        found = 0
        accepted: List[Tuple[str, bytes]] = []
        for filename in self.settings.key_files:
            path = home / ".ssh" / filename
            if not path.exists():
                logging.debug("No %s for %s", path, source)
                continue

            found += 1
            content = self._read_key_file(path)
            if not self.validator(content):
                logging.warning("Skipping %s, not a valid public key", path)
                continue

            accepted.append((self.entry_name(source, filename), content))

        if not accepted:
            if found:
                raise ValidationFailed(f"None of the public key files of {source} are valid")
            raise NotFound(f"No public key files found for {source} (looked for {', '.join(self.settings.key_files)})")

        context = self.ensure(target)
        for name, content in accepted:
            context.stage(name, content)

        return self.commit(context, f"Import {', '.join(name for name, _ in accepted)} from {source}")

    def add_file(self, file_or_account: str, target: Optional[str]=None) -> str:
        """Add a key file to target. If file_or_account is not a file, it is
        taken as an account name and that account's authorized_keys is added."""
        target = target or self.operator
        self._check_clean()

        path = Path(os.path.expanduser(file_or_account))
        if path.is_file():
            content = self._read_key_file(path)
            name = self.entry_name(self.operator, path.name)
        elif ACCOUNT_NAME_PATTERN.match(file_or_account) and self.accounts.exists(file_or_account):
            home = self.accounts.home(file_or_account)
            assert home is not None
            path = home / AUTHORIZED_KEYS
            content = self._read_key_file(path)
            name = self.entry_name(file_or_account, path.name)
        else:
            raise NotFound(f"{file_or_account} is neither a readable file nor an account")

        if not self.validator(content):
            raise ValidationFailed(f"{path} does not contain a valid public key")

        context = self.ensure(target)
        context.stage(name, content)
        return self.commit(context, f"Add {name}")

    def remove_entry(self, name: str, target: Optional[str]=None) -> str:
        """Remove one key entry from target."""
        target = target or self.operator
        if name == CHAIN_FILE:
            raise PreconditionFailed("The chain file can't be removed, use detach instead")

        self._check_store()
        keychain = self.keychain(target)
        if not keychain.exists():
            raise NotFound(f"No keychain named {target}")
        if name not in (entry for entry, _ in keychain.entries()):
            raise NotFound(f"Keychain {target} has no entry {name}")

        context = self.ensure(target)
        context.stage(name, None)
        return self.commit(context, f"Remove {name}")

    def add_chain(self, source: str, target: Optional[str]=None) -> str:
        """Chain source's keychain into target so that deploying target also
        deploys source's keys."""
        target = target or self.operator
        self._check_account_name(source)
        self._check_store()

        if source == target:
            raise PreconditionFailed(f"Keychain {target} can't be chained to itself")
        if self.store.resolve_ref(source) is None:
            raise PreconditionFailed(f"No keychain named {source} to chain")

        context = self.ensure(target)
        content = self.keychain(target).chain_content() or b""

        if source in parse_chain(content):
            logging.info("%s is already chained to %s", source, target)
            return context.base_revision

        if content and not content.endswith(b"\n"):
            content += b"\n"
        context.stage(CHAIN_FILE, content + render_chain([source]))
        return self.commit(context, f"Chain {source}")

    def remove_chain(self, source: Optional[str]=None, target: Optional[str]=None) -> str:
        """Remove source from target's chain file, or every chained account if
        source is None. The chain file itself is kept, possibly empty."""
        target = target or self.operator
        self._check_store()

        if self.store.resolve_ref(target) is None:
            raise NotFound(f"No keychain named {target}")

        context = self.ensure(target)
        content = self.keychain(target).chain_content() or b""

        if source is None:
            context.stage(CHAIN_FILE, b"")
            return self.commit(context, "Detach all chained keychains")

        if source not in parse_chain(content):
            logging.info("%s is not chained to %s", source, target)
            return context.base_revision

        kept = [line for line in content.splitlines(keepends=True)
                if line.decode("utf-8", errors="replace").strip() != source]
        remaining = b"".join(kept)
        if not parse_chain(remaining):
            remaining = b""

        context.stage(CHAIN_FILE, remaining)
        return self.commit(context, f"Detach {source}")

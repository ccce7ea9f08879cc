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
"""Append-only revision log holding one ref per keychain"""

import os
import json
import shutil
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Tuple, Dict
from .types import StrPath, StagedBlobs, RevisionRecord, HistoryEntry
from .keystash_utility import atomic_write, sha256_hexdigest

__all__ = ["KeychainStore"]

SHORT_ID_LENGTH = 8

class KeychainStore():
    """Content-addressed store of named refs, each pointing at the newest
    revision of one account's keychain. Blobs live under objects/ keyed by
    their SHA256, revisions under revisions/ keyed by the SHA256 of their
    canonical JSON. A non-bare store also has a HEAD file and a worktree/
    directory holding a checkout of one keychain.

    Lookups return None for anything absent. Whether absence is an error is
    up to the caller."""

    def __init__(self, root: StrPath, ref_prefix: str="keychain/"):
        self.root = Path(os.path.expanduser(root))
        self.ref_prefix = ref_prefix
        self.objects_dir = self.root / "objects"
        self.revisions_dir = self.root / "revisions"
        self.refs_dir = self.root / "refs"
        self.head_file = self.root / "HEAD"
        self.worktree = self.root / "worktree"

    def init(self, bare: bool=False) -> None:
        """Create the store layout. Safe to call on an existing store."""
        for directory in (self.objects_dir, self.revisions_dir, self.refs_dir):
            os.makedirs(directory, mode=0o700, exist_ok=True)

        if not bare:
            os.makedirs(self.worktree, mode=0o700, exist_ok=True)

        logging.debug("Initialized %sstore in %s", "bare " if bare else "", self.root)

    def exists(self) -> bool:
        """True if init() has been run on this root."""
        return self.objects_dir.is_dir() and self.revisions_dir.is_dir() and self.refs_dir.is_dir()

    def is_bare(self) -> bool:
        """True if the store has no working tree."""
        return not self.worktree.is_dir()

    def _ref_path(self, account: str) -> Path:
        if not account or "/" in account or account.startswith(".") or account != account.strip():
            raise ValueError(f"Invalid account name {account!r}")
        return self.refs_dir / f"{self.ref_prefix}{account}"

    def resolve_ref(self, account: str) -> Optional[str]:
        """Returns the tip revision id of the account's keychain, or None."""
        try:
            return self._ref_path(account).read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None

    def _load_revision(self, revision: str) -> Optional[RevisionRecord]:
        try:
            with open(self.revisions_dir / f"{revision}.json", "r", encoding="utf-8") as inf:
                return json.load(inf)
        except FileNotFoundError:
            return None

    def _load_tree(self, revision: Optional[str]) -> Optional[Dict[str, str]]:
        if revision is None:
            return None
        record = self._load_revision(revision)
        if record is None:
            return None
        return record["tree"]

    def _read_object(self, digest: str) -> bytes:
        with open(self.objects_dir / digest, "rb") as inf:
            return inf.read()

    def read_tree(self, revision: str) -> Optional[List[Tuple[str, bytes]]]:
        """Returns (name, content) pairs of the revision, ordered by name."""
        tree = self._load_tree(revision)
        if tree is None:
            return None
        return [(name, self._read_object(tree[name])) for name in sorted(tree)]

    def read_blob(self, revision: str, name: str) -> Optional[bytes]:
        """Returns the content of one named blob of the revision, or None."""
        tree = self._load_tree(revision)
        if tree is None or name not in tree:
            return None
        return self._read_object(tree[name])

    def _store_object(self, content: bytes) -> str:
        digest = sha256_hexdigest(content)
        path = self.objects_dir / digest
        if not path.exists():
            atomic_write(path, content, mode=0o600)
        return digest

    def _commit(self, account: str, tree: Dict[str, str], parent: Optional[str], message: str, author: str) -> str:
        record: RevisionRecord = {
            "tree": tree,
            "parent": parent,
            "message": message,
            "author": author,
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        serialized = json.dumps(record, sort_keys=True, separators=(",", ":")).encode("utf-8")
        revision = sha256_hexdigest(serialized)

        atomic_write(self.revisions_dir / f"{revision}.json", serialized, mode=0o600)
        atomic_write(self._ref_path(account), f"{revision}\n".encode("utf-8"), mode=0o600)

        logging.debug("Committed %s to %s%s: %s", revision[:SHORT_ID_LENGTH], self.ref_prefix, account, message)
        return revision

    def create_orphan_ref(self, account: str, blobs: Dict[str, bytes], message: str, author: str) -> str:
        """Creates the account's ref with a parentless first revision holding
        blobs. Raises FileExistsError if the ref already exists."""
        if self.resolve_ref(account) is not None:
            raise FileExistsError(f"Ref {self.ref_prefix}{account} already exists")

        tree = {name: self._store_object(content) for name, content in blobs.items()}
        return self._commit(account, tree, None, message, author)

    def write_blobs(self, account: str, blobs: StagedBlobs, message: str, author: str) -> Optional[str]:
        """Writes all blobs to the account's ref as one revision. A None value
        removes that name. Returns the new tip, the unchanged tip if the
        resulting tree is identical to the current one, or None if the ref
        does not exist."""
        parent = self.resolve_ref(account)
        current = self._load_tree(parent)
        if current is None:
            return None

        tree = dict(current)
        for name, content in blobs.items():
            if content is None:
                tree.pop(name, None)
            else:
                tree[name] = self._store_object(content)

        if tree == current:
            logging.debug("No changes to %s%s, nothing committed", self.ref_prefix, account)
            return parent

        return self._commit(account, tree, parent, message, author)

    def list_refs(self) -> List[str]:
        """Account names of all keychains, sorted."""
        ref_dir = self.refs_dir / self.ref_prefix if self.ref_prefix.endswith("/") else self.refs_dir
        name_prefix = "" if self.ref_prefix.endswith("/") else self.ref_prefix

        try:
            names = os.listdir(ref_dir)
        except FileNotFoundError:
            return []

        return sorted(name[len(name_prefix):] for name in names
                      if name.startswith(name_prefix) and not name.startswith(".") and (ref_dir / name).is_file())

    @staticmethod
    def short_revision_id(revision: str) -> str:
        """Abbreviated revision id for display."""
        return revision[:SHORT_ID_LENGTH]

    def history(self, account: str) -> Optional[List[HistoryEntry]]:
        """Revisions of the account's keychain, newest first."""
        revision = self.resolve_ref(account)
        if revision is None:
            return None

        entries: List[HistoryEntry] = []
        while revision is not None:
            record = self._load_revision(revision)
            if record is None:
                logging.warning("Revision %s of %s is missing", revision, account)
                break
            entries.append({
                "id": revision,
                "parent": record["parent"],
                "message": record["message"],
                "author": record["author"],
                "timestamp": record["timestamp"],
                "names": sorted(record["tree"]),
            })
            revision = record["parent"]

        return entries

    def head(self) -> Optional[str]:
        """The account whose keychain is checked out, or None."""
        try:
            return self.head_file.read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None

    def checkout(self, account: str) -> None:
        """Replace the working tree with the tip of the account's keychain and
        record it in HEAD. Callers must check worktree_changes() first, this
        discards local edits."""
        if self.is_bare():
            return

        revision = self.resolve_ref(account)
        tree = self.read_tree(revision) if revision else None
        if tree is None:
            raise FileNotFoundError(f"No ref {self.ref_prefix}{account}")

        for entry in os.scandir(self.worktree):
            if entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path)
            else:
                os.unlink(entry.path)

        for name, content in tree:
            atomic_write(self.worktree / name, content)

        atomic_write(self.head_file, f"{account}\n".encode("utf-8"), mode=0o600)

    def worktree_changes(self) -> List[str]:
        """Names of modified, deleted and untracked files in the working tree
        relative to the tip of HEAD. Empty for a bare store or a clean tree."""
        if self.is_bare():
            return []

        present = sorted(os.listdir(self.worktree))
        account = self.head()

        # The checked out keychain was removed from the store, so the working
        # tree only holds stale copies of it
        if account and self.resolve_ref(account) is None:
            logging.warning("HEAD names %s, which has no keychain, ignoring %s", account, self.worktree)
            return []

        tree = self._load_tree(self.resolve_ref(account)) if account else None

        if tree is None:
            return present

        changes = []
        for name in sorted(set(present) | set(tree)):
            path = self.worktree / name
            if name not in tree or name not in present or not path.is_file():
                changes.append(name)
            else:
                with open(path, "rb") as inf:
                    if sha256_hexdigest(inf.read()) != tree[name]:
                        changes.append(name)

        return changes

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
"""Manages SSH public key keychains and deploys them as authorized_keys files"""

import sys
import argparse
import logging
from typing import Optional, List
from keystash.config import Settings
from keystash.errors import KeystashError, NotFound
from keystash.store import KeychainStore
from keystash.keychain import KeyChainManager
from keystash.deploy import DeploymentEngine
from keystash.keystash_utility import get_fingerprints


def _create_argument_parser() -> argparse.ArgumentParser:

    parser = argparse.ArgumentParser(description="""Stores the SSH public keys
    of each account as a versioned keychain and deploys a keychain, together
    with the keychains chained to it, as an account's authorized_keys.""")

    parser.add_argument("-d", metavar="store_dir", dest="store_dir", action="store", default=None,
                        help="""Keychain store directory. Defaults to
                        $KEYSTASH_DIR, or ~/.keystash.""")

    parser.add_argument("--ref-prefix", metavar="prefix", action="store", default=None,
                        help="""Prefix of keychain ref names. Defaults to
                        $KEYSTASH_REF_PREFIX, or keychain/.""")

    parser.add_argument("-v", action="store_true", dest="verbose",
                        help="Log debugging output.")

    commands = parser.add_subparsers(dest="command", metavar="command", required=True)

    init = commands.add_parser("init", help="Create the keychain store and your own keychain.")
    init.add_argument("--bare", action="store_true",
                      help="Create a store without a working tree.")

    new = commands.add_parser("new", help="Create an empty keychain.")
    new.add_argument("account")

    import_keys = commands.add_parser("import", help="""Add an account's
                                      public key files (~/.ssh/id_rsa.pub,
                                      ~/.ssh/id_ed25519.pub) to a keychain.""")
    import_keys.add_argument("account")
    import_keys.add_argument("-k", metavar="keychain", dest="keychain", default=None,
                             help="Target keychain. Defaults to the account's own.")

    add = commands.add_parser("add", help="""Add a public key file, or an
                              account's authorized_keys, to a keychain.""")
    add.add_argument("source", metavar="file_or_account")
    add.add_argument("-k", metavar="keychain", dest="keychain", default=None,
                     help="Target keychain. Defaults to your own.")

    remove = commands.add_parser("remove", help="Remove a key entry from a keychain.")
    remove.add_argument("entry")
    remove.add_argument("-k", metavar="keychain", dest="keychain", default=None,
                        help="Target keychain. Defaults to your own.")

    chain = commands.add_parser("chain", help="""Include another account's
                                keychain whenever a keychain is deployed.""")
    chain.add_argument("account")
    chain.add_argument("-k", metavar="keychain", dest="keychain", default=None,
                       help="Target keychain. Defaults to your own.")

    detach = commands.add_parser("detach", help="""Remove an account, or every
                                 account, from a keychain's chain.""")
    detach.add_argument("account", nargs="?", default=None)
    detach.add_argument("-k", metavar="keychain", dest="keychain", default=None,
                        help="Target keychain. Defaults to your own.")

    deploy = commands.add_parser("deploy", help="Write a keychain to an authorized_keys file.")
    deploy.add_argument("keychain", nargs="?", default=None,
                        help="Keychain to deploy. Defaults to your own.")
    deploy.add_argument("-t", metavar="account", dest="target", default=None,
                        help="Account to deploy to. Defaults to the keychain's account.")
    deploy.add_argument("-o", metavar="path", dest="output", default=None,
                        help="Write to this file instead of the account's ~/.ssh/authorized_keys.")
    deploy.add_argument("--all", action="store_true", dest="deploy_all",
                        help="Deploy every keychain to its own account.")

    commands.add_parser("list", help="List keychains.")

    exists = commands.add_parser("exists", help="Exit 0 if the keychain exists.")
    exists.add_argument("keychain")

    show = commands.add_parser("show", help="Show a keychain's entries and chain.")
    show.add_argument("keychain", nargs="?", default=None)

    log = commands.add_parser("log", help="Show a keychain's history.")
    log.add_argument("keychain", nargs="?", default=None)

    commands.add_parser("status", help="Show uncommitted changes in the working tree.")

    return parser

def _show(manager: KeyChainManager, account: str) -> None:
    keychain = manager.keychain(account)
    if not keychain.exists():
        raise NotFound(f"No keychain named {account}")

    assert keychain.revision is not None
    print(f"{account} {manager.store.short_revision_id(keychain.revision)}")
    for name, content in keychain.entries():
        fingerprints = get_fingerprints(content)
        print(f"  {name} {' '.join(fingerprints) if fingerprints else '(no fingerprint)'}")
    for chained in keychain.chain():
        state = "" if manager.store.resolve_ref(chained) else " (missing)"
        print(f"  chained: {chained}{state}")

def _log(store: KeychainStore, account: str) -> None:
    history = store.history(account)
    if history is None:
        raise NotFound(f"No keychain named {account}")

    for entry in history:
        print(f"{store.short_revision_id(entry['id'])} {entry['timestamp']} {entry['author']}: {entry['message']}")

def _execute_command(args: argparse.Namespace, settings: Settings) -> int:

    store = KeychainStore(settings.store_dir, ref_prefix=settings.ref_prefix)
    manager = KeyChainManager(store, settings)
    engine = DeploymentEngine(store, settings, accounts=manager.accounts)

    if args.command == "init":
        store.init(bare=args.bare)
        if not args.bare:
            manager.ensure(settings.operator)
        logging.info("Keychain store ready in %s", store.root)
    elif args.command == "new":
        manager.new(args.account)
    elif args.command == "import":
        manager.import_keys(args.account, args.keychain)
    elif args.command == "add":
        manager.add_file(args.source, args.keychain)
    elif args.command == "remove":
        manager.remove_entry(args.entry, args.keychain)
    elif args.command == "chain":
        manager.add_chain(args.account, args.keychain)
    elif args.command == "detach":
        manager.remove_chain(args.account, args.keychain)
    elif args.command == "deploy":
        if args.deploy_all:
            _, failures = engine.deploy_all()
            return 1 if failures else 0
        engine.deploy(args.keychain or settings.operator, args.target, args.output)
    elif args.command == "list":
        for account in store.list_refs():
            print(account)
    elif args.command == "exists":
        if store.resolve_ref(args.keychain) is None:
            return NotFound.exit_code
    elif args.command == "show":
        _show(manager, args.keychain or settings.operator)
    elif args.command == "log":
        _log(store, args.keychain or settings.operator)
    elif args.command == "status":
        for name in store.worktree_changes():
            print(name)

    return 0

def main(argv: Optional[List[str]]=None) -> int:
    """Run one keystash command. Returns the process exit status."""

    parser = _create_argument_parser()
    args = parser.parse_args(argv)

    if args.command == "deploy" and args.deploy_all and (args.keychain or args.target or args.output):
        parser.error("deploy --all can't be combined with a keychain, -t or -o")

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s - %(levelname)s  - %(message)s")

    try:
        settings = Settings(store_dir=args.store_dir, ref_prefix=args.ref_prefix)
        return _execute_command(args, settings)
    except KeystashError as err:
        logging.error("error: %s", err)
        return err.exit_code
    except ValueError as err:
        logging.error("error: %s", err)
        return 2

if __name__ == "__main__":
    sys.exit(main())

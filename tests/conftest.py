"""Shared fixtures for Keystash tests"""

from pathlib import Path
from types import SimpleNamespace
import pytest
from keystash.config import Settings
from keystash.store import KeychainStore
from keystash.accounts import AccountDirectory
from keystash.keychain import KeyChainManager
from keystash.deploy import DeploymentEngine
from keystash.keystash_utility import PUBLIC_KEY_PATTERN


def fake_validator(content):
    """Accepts content if every non-comment line looks like a public key,
    without needing ssh-keygen."""
    lines = [line for line in content.splitlines() if line.strip() and not line.startswith(b"#")]
    return bool(lines) and all(PUBLIC_KEY_PATTERN.search(line) for line in lines)

def make_key(owner, host, letter="A"):
    """A syntactically plausible ed25519 public key line."""
    return f"ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAI{letter * 60} {owner}@{host}\n".encode("utf-8")

class FakeAccounts(AccountDirectory):
    """Account directory backed by home directories under a temporary path."""

    def __init__(self, root):
        self.root = Path(root)
        self.homes = {}

    def add(self, account):
        """Create an account with an empty ~/.ssh."""
        home = self.root / account
        (home / ".ssh").mkdir(parents=True, exist_ok=True)
        self.homes[account] = home
        return home

    def exists(self, account):
        return account in self.homes

    def home(self, account):
        return self.homes.get(account)

    def ids(self, account):
        return None

    @staticmethod
    def is_privileged():
        return False

@pytest.fixture(name="stash")
def fixture_stash(tmp_path):
    """An initialized store operated by alice, with accounts alice, bob and carol."""
    accounts = FakeAccounts(tmp_path / "home")
    for account in ("alice", "bob", "carol"):
        accounts.add(account)

    settings = Settings(store_dir=tmp_path / "store", operator="alice", environ={})
    store = KeychainStore(settings.store_dir, ref_prefix=settings.ref_prefix)
    store.init()

    manager = KeyChainManager(store, settings, accounts=accounts, validator=fake_validator, hostname="host1")
    engine = DeploymentEngine(store, settings, accounts=accounts)

    return SimpleNamespace(store=store, settings=settings, accounts=accounts, manager=manager,
                           engine=engine, tmp_path=tmp_path)

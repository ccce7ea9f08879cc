"""
Keeps the SSH public keys of each account as a versioned keychain and deploys keychains, with the keychains they chain to, as authorized_keys files.
"""
from .keychain import KeyChain, KeyChainManager, WorkingContext
from .store import KeychainStore
from .deploy import DeploymentEngine

__all__ = ["KeyChain", "KeyChainManager", "WorkingContext", "KeychainStore", "DeploymentEngine"]

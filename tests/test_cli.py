#!/usr/bin/env python3
"""Command line tests"""

import pytest
from keystash.cli import main
from keystash.store import KeychainStore


@pytest.fixture(name="store_dir")
def fixture_store_dir(tmp_path, monkeypatch):
    """Store directory for an operator named carol."""
    monkeypatch.setenv("LOGNAME", "carol")
    monkeypatch.delenv("KEYSTASH_DIR", raising=False)
    monkeypatch.delenv("KEYSTASH_REF_PREFIX", raising=False)
    return str(tmp_path / "store")

def test_init_creates_operator_keychain(store_dir, capsys):
    """Test that init creates the store and the operator's keychain."""
    assert main(["-d", store_dir, "init"]) == 0
    assert main(["-d", store_dir, "exists", "carol"]) == 0
    assert main(["-d", store_dir, "exists", "dave"]) == 3

    capsys.readouterr()
    assert main(["-d", store_dir, "list"]) == 0
    assert capsys.readouterr().out == "carol\n"

def test_bare_init(store_dir):
    """Test that a bare store has no working tree or keychains."""
    assert main(["-d", store_dir, "init", "--bare"]) == 0
    assert KeychainStore(store_dir).is_bare()
    assert main(["-d", store_dir, "exists", "carol"]) == 3

def test_commands_before_init(store_dir):
    """Test that mutations need an initialized store."""
    assert main(["-d", store_dir, "new", "bob"]) == 3

def test_chain_and_detach(store_dir, capsys):
    """Test chaining keychains from the command line."""
    main(["-d", store_dir, "init"])
    assert main(["-d", store_dir, "new", "bob"]) == 0
    assert main(["-d", store_dir, "new", "bob"]) == 4
    assert main(["-d", store_dir, "chain", "bob"]) == 0
    assert main(["-d", store_dir, "chain", "carol"]) == 4
    assert main(["-d", store_dir, "chain", "dave"]) == 4

    capsys.readouterr()
    assert main(["-d", store_dir, "show"]) == 0
    assert "chained: bob\n" in capsys.readouterr().out

    assert main(["-d", store_dir, "detach"]) == 0
    capsys.readouterr()
    main(["-d", store_dir, "log"])
    messages = capsys.readouterr().out.splitlines()
    assert len(messages) == 3
    assert messages[0].endswith("carol: Detach all chained keychains")

def test_add_invalid_file(store_dir, tmp_path):
    """Test the exit status of a rejected key file."""
    main(["-d", store_dir, "init"])
    bad_file = tmp_path / "notes.txt"
    bad_file.write_text("hello\n", encoding="utf-8")

    assert main(["-d", store_dir, "add", str(bad_file)]) == 5
    assert len(KeychainStore(store_dir).history("carol")) == 1

def test_deploy_to_file(store_dir, tmp_path):
    """Test deploying to an explicit output file."""
    main(["-d", store_dir, "init"])
    output = tmp_path / "authorized_keys"

    assert main(["-d", store_dir, "deploy", "-o", str(output)]) == 0
    assert output.read_text(encoding="utf-8").startswith("#### keystash ")
    assert (tmp_path / "authorized_keys.sha256").exists()
    assert main(["-d", store_dir, "deploy", "dave", "-o", str(output)]) == 3

def test_status_reports_local_edits(store_dir, capsys):
    """Test that status lists working tree changes and mutations are refused."""
    main(["-d", store_dir, "init"])
    store = KeychainStore(store_dir)
    (store.worktree / "scratch").write_text("x", encoding="utf-8")

    capsys.readouterr()
    assert main(["-d", store_dir, "status"]) == 0
    assert capsys.readouterr().out == "scratch\n"
    assert main(["-d", store_dir, "new", "bob"]) == 4

def test_invalid_account_argument(store_dir):
    """Test that malformed names are rejected rather than crashing."""
    main(["-d", store_dir, "init"])
    assert main(["-d", store_dir, "exists", "../etc"]) == 2

def test_deploy_into_file_path_exits_with_access_denied(store_dir, tmp_path):
    """Test that a write failure is an exit status, not a traceback."""
    main(["-d", store_dir, "init"])
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    assert main(["-d", store_dir, "deploy", "-o", str(blocker / "authorized_keys")]) == 6

@pytest.mark.parametrize("extra", [["carol"], ["-t", "carol"], ["-o", "keys"]])
def test_deploy_all_rejects_single_deploy_options(store_dir, extra):
    """Test that --all can't be mixed with a keychain, target or output."""
    with pytest.raises(SystemExit) as exit_info:
        main(["-d", store_dir, "deploy", "--all", *extra])
    assert exit_info.value.code == 2

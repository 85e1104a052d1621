import json
import sqlite3
from pathlib import Path

import pytest

from bbcli.crypto import is_encrypted
from bbcli.errors import CliError, ErrorKind
from bbcli.vault import DB_FILENAME, Account, AccountVault, open_vault


def raw_rows(data_dir: Path):
    conn = sqlite3.connect(str(data_dir / DB_FILENAME))
    try:
        return conn.execute("SELECT name, api_key, api_secret, is_default FROM accounts ORDER BY name").fetchall()
    finally:
        conn.close()


def defaults(vault: AccountVault):
    return [a.name for a in vault.list_accounts() if a.is_default]


def test_first_account_becomes_default(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "key-main", "secret-main")
        vault.add("alt", "key-alt", "secret-alt")
        vault.add("zeta", "key-zeta", "secret-zeta")

        assert defaults(vault) == ["main"]
        assert vault.get_default().name == "main"


def test_list_is_ordered_immutable_and_decrypted(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("zeta", "kz", "sz")
        vault.add("alpha", "ka", "sa")
        accounts = vault.list_accounts()

    assert isinstance(accounts, tuple)
    assert [a.name for a in accounts] == ["alpha", "zeta"]
    assert [a.api_secret for a in accounts] == ["sa", "sz"]
    with pytest.raises(Exception):
        accounts[0].name = "changed"


def test_secret_is_encrypted_at_rest(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "key-main", "secret-main")

    (name, api_key, api_secret, is_default), = raw_rows(tmp_path)
    assert api_key == "key-main"
    assert is_encrypted(api_secret)
    assert "secret-main" not in api_secret
    assert envelope.decrypt(api_secret) == "secret-main"


def test_duplicate_name_rejected_and_store_unchanged(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "key-1", "secret-1")
        before = raw_rows(tmp_path)

        with pytest.raises(CliError) as exc_info:
            vault.add("main", "key-2", "secret-2")

        assert exc_info.value.kind is ErrorKind.DUPLICATE_NAME
        assert raw_rows(tmp_path) == before


def test_names_are_case_sensitive(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "k1", "s1")
        vault.add("Main", "k2", "s2")
        assert vault.get("Main").api_key == "k2"
        assert vault.get("MAIN") is None


def test_empty_name_rejected(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        with pytest.raises(ValueError):
            vault.add("", "k", "s")
        assert vault.list_accounts() == ()


def test_get_missing_returns_none(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        assert vault.get("nope") is None
        assert vault.get_default() is None


def test_remove(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "k1", "s1")
        vault.add("alt", "k2", "s2")
        vault.remove("alt")
        assert [a.name for a in vault.list_accounts()] == ["main"]

        with pytest.raises(CliError) as exc_info:
            vault.remove("alt")
        assert exc_info.value.kind is ErrorKind.NOT_FOUND


def test_removing_default_leaves_no_default(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "k1", "s1")
        vault.add("alt", "k2", "s2")
        vault.remove("main")

        assert vault.get_default() is None
        assert defaults(vault) == []


def test_set_default_switches_atomically(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "k1", "s1")
        vault.add("alt", "k2", "s2")
        vault.set_default("alt")

        assert defaults(vault) == ["alt"]
        assert vault.get_default().api_secret == "s2"


def test_set_default_missing_keeps_current(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "k1", "s1")
        with pytest.raises(CliError) as exc_info:
            vault.set_default("ghost")
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert defaults(vault) == ["main"]


def test_at_most_one_default_after_mixed_operations(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("a", "ka", "sa")
        vault.add("b", "kb", "sb")
        vault.set_default("b")
        vault.add("c", "kc", "sc")
        vault.remove("b")
        assert len(defaults(vault)) == 0
        vault.set_default("c")
        vault.set_default("a")
        vault.add("d", "kd", "sd")
        assert defaults(vault) == ["a"]


def test_store_rejects_second_default(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("a", "ka", "sa")
        vault.add("b", "kb", "sb")
        with pytest.raises(sqlite3.IntegrityError):
            vault.conn.execute("UPDATE accounts SET is_default = 1 WHERE name = 'b'")
        vault.conn.rollback()


def test_legacy_plaintext_rows_are_migrated(tmp_path: Path, envelope):
    # database written before secrets were encrypted or schema was versioned
    conn = sqlite3.connect(str(tmp_path / DB_FILENAME))
    conn.execute(
        "CREATE TABLE accounts (name TEXT PRIMARY KEY, api_key TEXT NOT NULL, "
        "api_secret TEXT NOT NULL, is_default INTEGER NOT NULL DEFAULT 0)"
    )
    conn.execute("INSERT INTO accounts VALUES ('old', 'k-old', 'plain-old', 1)")
    conn.execute("INSERT INTO accounts VALUES ('new', 'k-new', ?, 0)", (envelope.encrypt("s-new"),))
    conn.commit()
    conn.close()
    already_encrypted = dict((r[0], r[2]) for r in raw_rows(tmp_path))["new"]

    with open_vault(tmp_path, envelope) as vault:
        assert vault.get("old").api_secret == "plain-old"
        assert vault.get("new").api_secret == "s-new"
        assert vault.get_default().name == "old"

    stored = dict((r[0], r[2]) for r in raw_rows(tmp_path))
    assert is_encrypted(stored["old"])
    assert stored["new"] == already_encrypted


def test_reopen_does_not_churn_ciphertext(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "k1", "s1")
        vault.add("alt", "k2", "s2")
    first = raw_rows(tmp_path)

    with open_vault(tmp_path, envelope):
        pass
    with open_vault(tmp_path, envelope):
        pass

    assert raw_rows(tmp_path) == first


def test_account_never_exposes_secret(tmp_path: Path, envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "key-main", "TOP-SECRET-VALUE")
        accounts = vault.list_accounts()

    account = accounts[0]
    assert "TOP-SECRET-VALUE" not in repr(account)
    assert "TOP-SECRET-VALUE" not in repr(accounts)
    dumped = json.dumps([a.to_dict() for a in accounts])
    assert "TOP-SECRET-VALUE" not in dumped
    assert json.loads(dumped) == [{"name": "main", "apiKey": "key-main", "isDefault": True}]


def test_wrong_key_surfaces_decryption_failure(tmp_path: Path, envelope, other_envelope):
    with open_vault(tmp_path, envelope) as vault:
        vault.add("main", "k1", "s1")

    with open_vault(tmp_path, other_envelope) as vault:
        with pytest.raises(CliError) as exc_info:
            vault.get("main")
        assert exc_info.value.kind is ErrorKind.DECRYPTION_FAILURE


def test_open_vault_closes_on_error(tmp_path: Path, envelope):
    with pytest.raises(RuntimeError):
        with open_vault(tmp_path, envelope) as vault:
            raise RuntimeError("boom")
    assert vault.conn is None
    with pytest.raises(RuntimeError, match="closed"):
        vault.list_accounts()


def test_vault_context_manager_and_double_close(tmp_path: Path, envelope):
    with AccountVault(tmp_path / "nested" / "dir", envelope) as vault:
        vault.add("main", "k", "s")
    vault.close()
    assert (tmp_path / "nested" / "dir" / DB_FILENAME).exists()


def test_account_to_dict_shape():
    account = Account(name="n", api_key="k", api_secret="s", is_default=False)
    assert account.to_dict() == {"name": "n", "apiKey": "k", "isDefault": False}

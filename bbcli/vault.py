"""SQLite-backed account vault.

Stores named API credentials with at most one default account. Secrets are
encrypted with a ``CryptoEnvelope`` before they touch disk and decrypted on
every read. Opening a vault upgrades any legacy plaintext secret in place.

Use ``open_vault`` (or the vault as a context manager) so the database handle
is released on every exit path:

    >>> with open_vault(Path("~/.bybit-cli").expanduser(), envelope) as vault:
    ...     account = vault.get_default()
"""
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Tuple

from .crypto import CryptoEnvelope, is_encrypted
from .db_migrations import apply_migrations
from .errors import duplicate_name_error, not_found_error

DB_FILENAME = "accounts.db"

_SELECT_COLUMNS = "SELECT name, api_key, api_secret, is_default FROM accounts"


@dataclass(frozen=True)
class Account:
    """One named credential set. ``api_secret`` is plaintext in memory only."""

    name: str
    api_key: str
    api_secret: str = field(repr=False)
    is_default: bool = False

    def to_dict(self) -> dict:
        """Public shape for output surfaces; never includes the secret."""
        return {"name": self.name, "apiKey": self.api_key, "isDefault": self.is_default}


class AccountVault:
    """Durable CRUD over accounts.

    Single-writer: one process owns the database file between construction
    and ``close()``.
    """

    def __init__(self, data_dir: Path, envelope: CryptoEnvelope):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.data_dir / DB_FILENAME
        self.envelope = envelope
        self.conn: Optional[sqlite3.Connection] = sqlite3.connect(str(self.path), timeout=30)
        self.conn.row_factory = sqlite3.Row
        try:
            self.conn.execute("PRAGMA journal_mode = WAL")
            self.conn.execute("PRAGMA foreign_keys = ON")
            self._init_db()
        except Exception:
            self.close()
            raise

    def _init_db(self) -> None:
        apply_migrations(self._connection())
        self._migrate_unencrypted_secrets()

    def __enter__(self) -> "AccountVault":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise RuntimeError("Vault is closed")
        return self.conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        conn = self._connection()
        cur = conn.cursor()
        cur.execute("BEGIN IMMEDIATE")
        try:
            yield cur
        except Exception:
            conn.rollback()
            raise
        conn.commit()

    def _to_account(self, row: sqlite3.Row) -> Account:
        return Account(
            name=row["name"],
            api_key=row["api_key"],
            api_secret=self.envelope.decrypt(row["api_secret"]),
            is_default=row["is_default"] == 1,
        )

    def _get_raw(self, name: str) -> Optional[sqlite3.Row]:
        cur = self._connection().execute(f"{_SELECT_COLUMNS} WHERE name = ?", (name,))
        return cur.fetchone()

    def _migrate_unencrypted_secrets(self) -> int:
        """Encrypt every legacy plaintext secret; already-encrypted rows are untouched."""
        rows = self._connection().execute("SELECT name, api_secret FROM accounts").fetchall()
        legacy = [(row["name"], row["api_secret"]) for row in rows if not is_encrypted(row["api_secret"])]
        if not legacy:
            return 0
        with self._transaction() as cur:
            for name, secret in legacy:
                cur.execute(
                    "UPDATE accounts SET api_secret = ? WHERE name = ?",
                    (self.envelope.encrypt(secret), name),
                )
        return len(legacy)

    # --- Account APIs ---
    def list_accounts(self) -> Tuple[Account, ...]:
        cur = self._connection().execute(f"{_SELECT_COLUMNS} ORDER BY name")
        return tuple(self._to_account(row) for row in cur.fetchall())

    def add(self, name: str, api_key: str, api_secret: str) -> None:
        """Insert a new account; the first account ever added becomes default.

        Raises:
            CliError: DUPLICATE_NAME if ``name`` is taken (case-sensitive).
            ValueError: If ``name`` is empty.
        """
        if not name:
            raise ValueError("Account name must not be empty")
        encrypted = self.envelope.encrypt(api_secret)
        try:
            with self._transaction() as cur:
                cur.execute("SELECT 1 FROM accounts WHERE name = ?", (name,))
                if cur.fetchone() is not None:
                    raise duplicate_name_error(name)
                cur.execute("SELECT COUNT(*) FROM accounts")
                is_default = 1 if cur.fetchone()[0] == 0 else 0
                cur.execute(
                    "INSERT INTO accounts (name, api_key, api_secret, is_default) VALUES (?, ?, ?, ?)",
                    (name, api_key, encrypted, is_default),
                )
        except sqlite3.IntegrityError:
            raise duplicate_name_error(name)

    def remove(self, name: str) -> None:
        """Delete an account. Removing the default leaves no default account."""
        with self._transaction() as cur:
            cur.execute("DELETE FROM accounts WHERE name = ?", (name,))
            if cur.rowcount == 0:
                raise not_found_error(name)

    def get(self, name: str) -> Optional[Account]:
        row = self._get_raw(name)
        if row is None:
            return None
        return self._to_account(row)

    def get_default(self) -> Optional[Account]:
        cur = self._connection().execute(f"{_SELECT_COLUMNS} WHERE is_default = 1")
        row = cur.fetchone()
        if row is None:
            return None
        return self._to_account(row)

    def set_default(self, name: str) -> None:
        """Make ``name`` the only default account, atomically."""
        with self._transaction() as cur:
            cur.execute("SELECT 1 FROM accounts WHERE name = ?", (name,))
            if cur.fetchone() is None:
                raise not_found_error(name)
            cur.execute("UPDATE accounts SET is_default = 0")
            cur.execute("UPDATE accounts SET is_default = 1 WHERE name = ?", (name,))

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None


@contextmanager
def open_vault(data_dir: Path, envelope: CryptoEnvelope) -> Iterator[AccountVault]:
    """Open a vault and guarantee it is closed when the block exits."""
    vault = AccountVault(data_dir, envelope)
    try:
        yield vault
    finally:
        vault.close()

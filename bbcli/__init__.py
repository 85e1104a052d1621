"""
Bybit command-line client.

Core pieces:
- Account vault: named API credentials in SQLite with a single default
  account, secrets encrypted at rest (AES-256-GCM) and legacy plaintext rows
  upgraded on open
- Live-update reconcilers: pure functions folding push messages for wallet,
  position, order, ticker and order-book topics into client-side snapshots
- Error taxonomy with stable codes and remediation hints; credential fields
  redacted from anything echoed back
- Structured logging via loguru
- Configuration-driven (YAML + environment)

Core Modules:
    crypto: Encryption envelope and key derivation
    vault: Account storage
    db_migrations: Schema versioning for the accounts database
    reconcilers: Per-topic snapshot merge functions
    watch: Stream sessions and shutdown handling
    errors: Error kinds, exchange error mapping, redaction
    credentials: Account resolution for commands
    server: Daemon PID marker
    config: Configuration loading

Example:
    >>> from pathlib import Path
    >>> from bbcli.crypto import CryptoEnvelope
    >>> from bbcli.vault import open_vault
    >>>
    >>> envelope = CryptoEnvelope()
    >>> with open_vault(Path("~/.bybit-cli").expanduser(), envelope) as vault:
    ...     vault.add("main", api_key="KEY", api_secret="SECRET")
    ...     account = vault.get_default()
"""

__version__ = "0.1.0"
__all__ = [
    "crypto",
    "vault",
    "db_migrations",
    "reconcilers",
    "watch",
    "errors",
    "credentials",
    "server",
    "config",
    "bybit_client",
    "ws_client",
    "cli",
]

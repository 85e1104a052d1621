"""Credential resolution: pick the API key pair a command runs with.

Priority order:
1. Environment variables: BYBIT_API_KEY, BYBIT_API_SECRET (read by the caller
   and passed in via ``credentials_from_env``)
2. Account named with ``--account``
3. The vault's default account
"""
from typing import Mapping, NamedTuple, Optional

from .errors import api_key_not_found_error, not_found_error
from .vault import AccountVault

ENV_API_KEY = "BYBIT_API_KEY"
ENV_API_SECRET = "BYBIT_API_SECRET"


class BybitCredentials(NamedTuple):
    api_key: str
    api_secret: str

    def __repr__(self) -> str:
        return f"BybitCredentials(api_key={mask_api_key(self.api_key)!r}, api_secret='****')"


def mask_api_key(api_key: str) -> str:
    """Show the first four characters of a key followed by ``****``."""
    if len(api_key) <= 4:
        return "****"
    return f"{api_key[:4]}****"


def credentials_from_env(environ: Mapping[str, str]) -> Optional[BybitCredentials]:
    api_key = environ.get(ENV_API_KEY)
    api_secret = environ.get(ENV_API_SECRET)
    if api_key and api_secret:
        return BybitCredentials(api_key=api_key, api_secret=api_secret)
    return None


def resolve_credentials(vault: AccountVault, account: Optional[str] = None) -> BybitCredentials:
    """Resolve credentials from the vault.

    Raises:
        CliError: NOT_FOUND for an unknown ``account``; API_KEY_NOT_FOUND when
                  no account is named and there is no default.
    """
    if account:
        found = vault.get(account)
        if found is None:
            raise not_found_error(account)
    else:
        found = vault.get_default()
        if found is None:
            raise api_key_not_found_error()
    return BybitCredentials(api_key=found.api_key, api_secret=found.api_secret)

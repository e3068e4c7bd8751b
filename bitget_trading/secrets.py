"""Secrets management: load Bitget API credentials from environment or config file.

Priority order:
1. Environment variables: BITGET_API_KEY, BITGET_SECRET_KEY, BITGET_PASSPHRASE
2. Config file: ~/.bitget_config.json or custom path via ENV BITGET_CREDENTIALS_PATH
"""
import json
import os
from pathlib import Path
from typing import NamedTuple, Optional

_FIELDS = ("api_key", "api_secret", "passphrase")


class BitgetCredentials(NamedTuple):
    api_key: str
    api_secret: str
    passphrase: str

    @property
    def complete(self) -> bool:
        return bool(self.api_key and self.api_secret and self.passphrase)


def load_credentials(
    config_path: Optional[str] = None,
    required: bool = True,
) -> BitgetCredentials:
    """Load Bitget credentials from env or config file.

    Args:
        config_path: Optional override path to config file. If not provided,
                     checks BITGET_CREDENTIALS_PATH env var, then ~/.bitget_config.json
        required: When False, return whatever was found (possibly empty strings)
                  instead of raising; public market-data calls and dry runs
                  do not need credentials.

    Returns:
        BitgetCredentials with api_key, api_secret, passphrase

    Raises:
        ValueError: If credentials are required but not found or incomplete
    """
    # Try environment variables first (highest priority)
    found = {
        "api_key": os.getenv("BITGET_API_KEY"),
        "api_secret": os.getenv("BITGET_SECRET_KEY"),
        "passphrase": os.getenv("BITGET_PASSPHRASE"),
    }

    if not all(found.values()):
        if config_path is None:
            config_path = os.getenv("BITGET_CREDENTIALS_PATH")
        if config_path is None:
            config_path = str(Path.home() / ".bitget_config.json")

        config_file = Path(config_path)
        if config_file.exists():
            try:
                with config_file.open("r") as f:
                    cfg = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ValueError(f"Failed to load config from {config_path}: {e}")
            for name in _FIELDS:
                found[name] = found[name] or cfg.get(name)

    creds = BitgetCredentials(**{name: found[name] or "" for name in _FIELDS})
    if required and not creds.complete:
        raise ValueError(
            "Missing Bitget credentials. Provide via:\n"
            "  - Environment: BITGET_API_KEY, BITGET_SECRET_KEY, BITGET_PASSPHRASE\n"
            f"  - Config file: {config_path}\n"
            "  - BITGET_CREDENTIALS_PATH env var to override config location"
        )

    return creds

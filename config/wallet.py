"""config/wallet.py

Crank wallet key material and account address parsing.

HARD RULES:
- Secret bytes come from env vars or a keypair file only (never from YAML)
- No random fallback keypair: missing key material is a startup failure
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Mapping, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from config.keeper_config import ConfigError


KEYPAIR_BYTES = 64


class WalletError(RuntimeError):
    pass


def _keypair_from_json(text: str, source: str) -> Keypair:
    try:
        secret = json.loads(text)
    except json.JSONDecodeError as e:
        raise WalletError(f"Failed to parse {source}: {e}")

    if not isinstance(secret, list) or len(secret) != KEYPAIR_BYTES:
        raise WalletError(f"{source} must be a JSON array of {KEYPAIR_BYTES} integers")
    if not all(isinstance(b, int) and 0 <= b <= 255 for b in secret):
        raise WalletError(f"{source} contains values outside 0..255")

    try:
        return Keypair.from_bytes(bytes(secret))
    except ValueError as e:
        raise WalletError(f"{source} is not a valid ed25519 keypair: {e}")


def load_crank_keypair(env: Optional[Mapping[str, str]] = None) -> Keypair:
    """Load the crank signer.

    Reads CRANK_KEYPAIR_JSON (Solana CLI JSON array) or, if unset,
    the file named by CRANK_KEYPAIR_PATH.

    Raises:
        WalletError: If no usable key material is configured.
    """
    if env is None:
        env = os.environ

    inline = env.get("CRANK_KEYPAIR_JSON", "").strip()
    if inline:
        return _keypair_from_json(inline, "CRANK_KEYPAIR_JSON")

    path = env.get("CRANK_KEYPAIR_PATH", "").strip()
    if path:
        p = Path(path).expanduser()
        if not p.exists():
            raise WalletError(f"Keypair file not found: {p}")
        try:
            text = p.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise WalletError(f"Cannot read keypair file {p}: {e}")
        return _keypair_from_json(text, str(p))

    raise WalletError("No crank key material: set CRANK_KEYPAIR_JSON or CRANK_KEYPAIR_PATH")


def parse_pubkey(name: str, value: str) -> Pubkey:
    """Parse a base58 address, naming the offending setting on failure."""
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise ConfigError(f"{name} is not a valid base58 address ({value!r}): {e}")

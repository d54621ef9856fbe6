"""Liquidator keypair loading from the environment or a secret file."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from solders.keypair import Keypair

from .config import WalletConfig

logger = logging.getLogger(__name__)


def parse_keypair(secret: str) -> Keypair:
    """Parse a keypair from base58 text, a JSON byte array or ``{"privKey": ...}``.

    Raises:
        ValueError: the secret is in none of the supported forms.
    """
    secret = secret.strip()
    if secret.startswith(("[", "{")):
        try:
            value = json.loads(secret)
        except json.JSONDecodeError as e:
            raise ValueError(f"Keypair secret is not valid JSON: {e}") from e
        if isinstance(value, dict):
            if "privKey" not in value:
                raise ValueError("Keypair JSON object has no 'privKey' field")
            return parse_keypair(str(value["privKey"]))
        return Keypair.from_bytes(bytes(value))
    return Keypair.from_base58_string(secret)


def load_keypair(config: WalletConfig) -> Keypair:
    """Load the payer keypair; the environment variable wins over the file."""
    if config.keypair_env:
        secret = os.environ.get(config.keypair_env, "")
        if secret:
            logger.debug("Keypair loaded from $%s", config.keypair_env)
            return parse_keypair(secret)

    if config.keypair_path:
        path = Path(config.keypair_path)
        if path.exists():
            logger.debug("Keypair loaded from %s", path)
            return parse_keypair(path.read_text())
        logger.debug("Keypair file %s does not exist", path)

    raise ValueError(
        f"No keypair found in ${config.keypair_env} or at {config.keypair_path}"
    )

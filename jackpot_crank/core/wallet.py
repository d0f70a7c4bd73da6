"""
Operator wallet loading.

The crank signs with its own keypair (a Solana CLI JSON array of 64
secret-key bytes). It refuses to run with the admin/deploy key unless
ALLOW_CRANK_KEYPAIR_REUSE is set.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from solders.keypair import Keypair

logger = logging.getLogger(__name__)


class CrankConfigError(RuntimeError):
    """Startup condition the crank cannot run without."""
    pass


def read_keypair(path: Path) -> Keypair:
    raw = json.loads(path.read_text(encoding="utf-8"))
    return Keypair.from_bytes(bytes(raw))


def load_service_wallet(
    keypair_path: str,
    admin_keypair_path: Optional[str] = None,
    allow_reuse: bool = False,
) -> Keypair:
    resolved = Path(keypair_path).expanduser().resolve()
    if not resolved.exists():
        raise CrankConfigError(f"Service wallet not found at {resolved}")

    try:
        keypair = read_keypair(resolved)
    except (ValueError, TypeError) as e:
        raise CrankConfigError(f"Service wallet at {resolved} is unreadable: {e}")

    if allow_reuse or not admin_keypair_path:
        return keypair

    admin_path = Path(admin_keypair_path).expanduser().resolve()
    if not admin_path.exists():
        return keypair

    try:
        admin = read_keypair(admin_path)
    except (ValueError, TypeError):
        # Optional file; a malformed admin key cannot collide.
        logger.warning(f"[LEDGER] Ignoring unreadable admin keypair at {admin_path}")
        return keypair

    if admin.pubkey() == keypair.pubkey():
        raise CrankConfigError(
            f"Crank key must be separate from the admin keypair ({admin.pubkey()}). "
            f"Set CRANK_KEYPAIR_PATH to a dedicated keypair or ALLOW_CRANK_KEYPAIR_REUSE=true to override."
        )
    return keypair

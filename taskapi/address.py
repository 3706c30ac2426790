"""
Address and transaction hash shape checks.

Only the syntax is checked: EIP-55 checksums are not enforced and
transaction hashes are never looked up on chain.
"""

import re
from typing import Optional

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_evm_address(value: object) -> bool:
    """Return True if value is 0x followed by 40 hex characters."""
    return isinstance(value, str) and ADDRESS_RE.fullmatch(value) is not None


def is_tx_hash(value: object) -> bool:
    """Return True if value is 0x followed by 64 hex characters."""
    return isinstance(value, str) and TX_HASH_RE.fullmatch(value) is not None


def normalize_address(address: str) -> str:
    """Lower-case an address for use as a storage key."""
    return address.lower()


def normalize_tx_hash(tx_hash: Optional[str]) -> Optional[str]:
    """Lower-case a transaction hash, passing None through."""
    if tx_hash is None:
        return None
    return tx_hash.lower()

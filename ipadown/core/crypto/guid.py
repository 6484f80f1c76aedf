"""Pseudo device identifier derived from the account id."""
from Crypto.Hash import SHA1

DEFAULT_GUID = '000C2941396B'
GUID_DEFAULT_PREFIX = 2
GUID_SEED = 'CAFEBABE'
GUID_POS = 10


def generate_guid(apple_id: str) -> str:
    """
    Derive the store guid for an account.

    The store expects a stable device identifier; the same account id
    always maps to the same 12 hex digits.

    Args:
        apple_id: Account id (email)

    Returns:
        Upper-case 12 character guid
    """
    digest = SHA1.new((GUID_SEED + apple_id + GUID_SEED).encode('utf-8')).hexdigest()
    hash_len = len(DEFAULT_GUID) - GUID_DEFAULT_PREFIX
    hash_part = digest[GUID_POS:GUID_POS + hash_len]
    return (DEFAULT_GUID[:GUID_DEFAULT_PREFIX] + hash_part).upper()

"""
Verification Credentials

Two kinds of credential unlock full disclosure:

1. Vendor keys: opaque bearer strings. Only their SHA-256 digests are held
   in memory; comparison is constant-time across the whole set.
2. Signed assertions: "ed25519:<public_key_b64>:<signature_b64>" over
   "verify:<token_id>", by a key in the authorized public key set. An
   assertion only unlocks the token id it was signed for.

Issuance and revocation happen elsewhere. This only checks membership.
"""

import hashlib
import hmac
from typing import Iterable

from .signer import Signer


class CredentialVerifier:
    """Membership check against the authorized credential set."""

    def __init__(
        self,
        vendor_keys: Iterable[str] = (),
        vendor_public_keys: Iterable[str] = (),
    ):
        self._key_digests = [
            hashlib.sha256(key.encode("utf-8")).digest()
            for key in vendor_keys if key
        ]
        self._public_keys = frozenset(pk for pk in vendor_public_keys if pk)

    @property
    def configured(self) -> bool:
        return bool(self._key_digests or self._public_keys)

    def _is_vendor_key(self, credential: str) -> bool:
        digest = hashlib.sha256(credential.encode("utf-8")).digest()
        matched = False
        # No early exit: timing does not reveal which entry matched
        for known in self._key_digests:
            matched |= hmac.compare_digest(digest, known)
        return matched

    def _is_valid_assertion(self, credential: str, token_id: str) -> bool:
        parsed = Signer.parse_assertion(credential)
        if parsed is None:
            return False
        public_key, signature = parsed
        if public_key not in self._public_keys:
            return False
        return Signer.verify(Signer.assertion_message(token_id), signature, public_key)

    def authorize(self, credential: str, token_id: str) -> bool:
        """True if the credential unlocks full disclosure of token_id."""
        if not credential:
            return False
        if Signer.parse_assertion(credential) is not None:
            return self._is_valid_assertion(credential, token_id)
        return self._is_vendor_key(credential)

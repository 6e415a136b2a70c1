"""
Ed25519 Signing for verification assertions

A vendor holding an authorized keypair can prove, per token id, that it is
allowed to see a decrypted receipt, without ever sending a reusable secret.

Assertion message: "verify:<token_id>"
Credential wire form: "ed25519:<public_key_b64>:<signature_b64>"
"""

import base64
from typing import Optional, Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey


ASSERTION_SCHEME = "ed25519"


class Signer:
    """Ed25519 keypairs, signatures and token-bound assertions."""

    @staticmethod
    def generate_keypair() -> Tuple[str, str]:
        """
        Generate a new Ed25519 keypair.

        Returns:
            Tuple of (private_key_b64, public_key_b64)
        """
        signing_key = SigningKey.generate()
        private_b64 = base64.b64encode(bytes(signing_key)).decode("utf-8")
        public_b64 = base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")
        return private_b64, public_b64

    @staticmethod
    def sign(message: str, private_key_b64: str) -> str:
        """Sign a message, returning the base64 raw signature."""
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        signed = signing_key.sign(message.encode("utf-8"))
        return base64.b64encode(signed.signature).decode("utf-8")

    @staticmethod
    def verify(message: str, signature_b64: str, public_key_b64: str) -> bool:
        """True if the signature is valid for message under the public key."""
        try:
            verify_key = VerifyKey(base64.b64decode(public_key_b64))
            verify_key.verify(message.encode("utf-8"), base64.b64decode(signature_b64))
            return True
        except (BadSignatureError, ValueError, TypeError):
            return False

    @staticmethod
    def assertion_message(token_id: str) -> str:
        return f"verify:{token_id}"

    @classmethod
    def make_assertion(cls, token_id: str, private_key_b64: str, public_key_b64: str) -> str:
        """Build the credential string a vendor sends for one token id."""
        signature = cls.sign(cls.assertion_message(token_id), private_key_b64)
        return f"{ASSERTION_SCHEME}:{public_key_b64}:{signature}"

    @staticmethod
    def parse_assertion(credential: str) -> Optional[Tuple[str, str]]:
        """
        Split an assertion credential into (public_key_b64, signature_b64).

        Returns None if the credential is not an assertion.
        """
        parts = credential.split(":")
        if len(parts) != 3 or parts[0] != ASSERTION_SCHEME:
            return None
        return parts[1], parts[2]

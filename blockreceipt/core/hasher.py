"""
Canonical Serialization and Hashing

Same receipt -> same bytes -> same hash. Always.

The integrity hash written to the ledger is computed over these bytes.
If serialization drifts, every existing commitment stops verifying.
Every change here must be backward-compatible or versioned.

CANONICAL SERIALIZATION RULES:
1. Version: "__canon_v" injected into every canonical output
2. Dictionary keys: sorted recursively
3. Nulls: omitted entirely
4. Empty strings, lists, dicts: preserved
5. Datetimes: ISO 8601 with microseconds, forced to UTC, Z suffix
6. Floats: BANNED (amounts are integer minor units)
7. JSON output: no extra whitespace, sorted keys, ASCII only
8. Top-level: must be dict/object
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any


class CanonicalSerializationError(Exception):
    """Raised when data cannot be canonically serialized."""
    pass


class Hasher:
    """
    Canonical serialization and SHA-256 hashing.

    IMMUTABLE CONTRACT:
    - Same logical input -> same hash
    - Across platforms and Python versions
    """

    SERIALIZATION_VERSION = 1

    @classmethod
    def _serialize_value(cls, value: Any, path: str = "") -> Any:
        if value is None:
            return None

        if isinstance(value, datetime):
            return cls._serialize_datetime(value, path)

        if isinstance(value, bool):
            return value

        if isinstance(value, int):
            return value

        # Floats are the #1 long-term determinism hazard
        if isinstance(value, float):
            raise CanonicalSerializationError(
                f"Cannot serialize float at {path}. "
                "Amounts must be integer minor units; use int, Decimal or str."
            )

        if isinstance(value, Decimal):
            return str(value)

        if isinstance(value, str):
            return value

        if isinstance(value, (list, tuple)):
            return [
                cls._serialize_value(v, f"{path}[{i}]")
                for i, v in enumerate(value)
            ]

        if isinstance(value, dict):
            return cls._to_canonical_dict(value, path)

        if hasattr(value, "model_dump"):
            return cls._to_canonical_dict(value.model_dump(mode="python"), path)

        if isinstance(value, bytes):
            raise CanonicalSerializationError(
                f"Cannot serialize bytes at {path}. Convert to base64 string first."
            )

        if isinstance(value, set):
            raise CanonicalSerializationError(
                f"Cannot serialize set at {path}. Sets have no stable ordering."
            )

        raise CanonicalSerializationError(
            f"Cannot serialize {type(value).__name__} at {path}."
        )

    @classmethod
    def _serialize_datetime(cls, dt: datetime, path: str) -> str:
        """Format: YYYY-MM-DDTHH:MM:SS.ffffffZ (UTC)."""
        if dt.tzinfo is None:
            raise CanonicalSerializationError(
                f"Datetime at {path} is timezone-naive. "
                "All datetimes must be timezone-aware."
            )
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_dt.microsecond:06d}Z"

    @classmethod
    def _to_canonical_dict(cls, data: dict[str, Any], path: str = "") -> dict[str, Any]:
        result = {}
        for key in sorted(data.keys()):
            if not isinstance(key, str):
                raise CanonicalSerializationError(
                    f"Dictionary key at {path} must be string, got {type(key).__name__}"
                )
            key_path = f"{path}.{key}" if path else key
            serialized = cls._serialize_value(data[key], key_path)
            if serialized is not None:
                result[key] = serialized
        return result

    @classmethod
    def canonicalize(cls, data: dict[str, Any] | Any) -> str:
        """
        Convert data to the canonical JSON string.

        Raises:
            CanonicalSerializationError: If data cannot be deterministically serialized
        """
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="python")

        if not isinstance(data, dict):
            raise CanonicalSerializationError(
                f"Top-level canonicalization requires a dict/object, "
                f"got {type(data).__name__}."
            )

        canonical_dict = {"__canon_v": cls.SERIALIZATION_VERSION, **cls._to_canonical_dict(data)}

        return json.dumps(
            canonical_dict,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )

    @classmethod
    def canonical_bytes(cls, data: dict[str, Any] | Any) -> bytes:
        return cls.canonicalize(data).encode("utf-8")

    @classmethod
    def hash_data(cls, data: dict[str, Any] | Any) -> str:
        """Hex-encoded SHA-256 of the canonical form (64 lowercase chars)."""
        return hashlib.sha256(cls.canonical_bytes(data)).hexdigest()

    @staticmethod
    def hash_bytes(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def constant_time_compare(a: str, b: str) -> bool:
        """Compare two digests without leaking where they differ."""
        return hmac.compare_digest(a.lower().encode("utf-8"), b.lower().encode("utf-8"))

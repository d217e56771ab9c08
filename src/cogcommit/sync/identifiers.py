"""
Identifier normalization for remote primary keys.

The remote service keys every table by UUID. Local session and turn ids come
from assistant transcripts and may be arbitrary strings, so they are mapped to
a UUID deterministically: re-pushing after a partial failure hits the same
remote rows instead of creating duplicates.
"""

import re
import uuid
from typing import Optional

from cogcommit.config import settings

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_uuid(value: str) -> bool:
    return bool(UUID_PATTERN.match(value))


def to_uuid(value: str, namespace: Optional[str] = None) -> str:
    """
    Return ``value`` if it already is a UUID, else a UUIDv5 derived from it.

    Args:
        value: Arbitrary identifier
        namespace: UUID namespace (defaults to the configured one)

    Returns:
        UUID string, stable for the same input and namespace
    """
    if is_uuid(value):
        return value
    ns = uuid.UUID(namespace or settings.uuid_namespace)
    return str(uuid.uuid5(ns, value))

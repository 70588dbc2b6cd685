import json
from typing import List, Optional
from uuid import UUID

from app.errors import InvalidInput


def parse_uuid_list(raw: Optional[str], field: str) -> List[UUID]:
    """Parse a multipart field holding a JSON array of ids (``'["id1", "id2"]'``)."""
    if raw is None or not raw.strip():
        return []
    try:
        values = json.loads(raw)
    except ValueError:
        raise InvalidInput(f"Invalid {field}: expected a JSON array of ids")
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        raise InvalidInput(f"Invalid {field}: expected a JSON array of ids")
    try:
        return [UUID(str(v)) for v in values]
    except ValueError:
        raise InvalidInput(f"Invalid {field}: malformed id")


def mb_to_bytes(mb: int) -> int:
    return mb * 1024 * 1024

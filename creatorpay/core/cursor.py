from __future__ import annotations

import base64
import json
from datetime import datetime
from typing import Optional, Tuple

from creatorpay.core.errors import ValidationError

# Keyset position in a newest-first listing: (created_at, id) of the last row served.
Position = Tuple[datetime, str]


def encode_cursor(position: Optional[Position]) -> Optional[str]:
    if not position:
        return None
    created_at, row_id = position
    raw = json.dumps({"t": created_at.isoformat(), "id": row_id}, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def decode_cursor(cursor: Optional[str]) -> Optional[Position]:
    """Opaque cursor back to a position; a tampered cursor is a ValidationError."""
    if not cursor:
        return None
    s = cursor.strip()
    pad = "=" * ((4 - (len(s) % 4)) % 4)
    try:
        obj = json.loads(base64.urlsafe_b64decode((s + pad).encode("utf-8")).decode("utf-8"))
        return datetime.fromisoformat(obj["t"]), str(obj["id"])
    except (ValueError, UnicodeDecodeError, TypeError, KeyError) as exc:
        raise ValidationError("Invalid cursor") from exc

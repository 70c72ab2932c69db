from __future__ import annotations

import uuid


def make_headers(user_id: uuid.UUID | None = None, *, role: str = "client") -> dict[str, str]:
    return {
        "X-User-Id": str(user_id or uuid.uuid4()),
        "X-User-Role": role,
    }

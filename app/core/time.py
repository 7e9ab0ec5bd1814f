from __future__ import annotations

import uuid
from datetime import datetime, timezone


def now_iso() -> str:
    # Fixed-width microsecond timestamps so string order == chronological order.
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def new_id() -> str:
    return uuid.uuid4().hex

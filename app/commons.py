"""
Shared utility functions and singletons used across multiple modules.
"""

import uuid
from datetime import datetime, timezone

from slowapi import Limiter
from slowapi.util import get_remote_address

# ── Shared rate-limiter instance ─────────────────────────────────────────
# Created here (not in main.py) so that route modules can import it
# without a circular dependency.
limiter = Limiter(key_func=get_remote_address)


def generate_task_id() -> str:
    """Generate a task ID (e.g., 'task_3f2a9c0d1b7e')."""
    return f"task_{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)

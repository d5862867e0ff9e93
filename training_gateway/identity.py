from typing import Optional
import re

from . import config
from .providers import ProfileProvider


BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


async def resolve_identity(authorization: Optional[str], profiles: ProfileProvider) -> str:
    """Map ``Authorization: Bearer <user_id>`` to a known user id.

    Missing, malformed or unknown credentials fall back to the default demo user.
    """
    m = BEARER_RE.match(str(authorization or ""))
    if not m:
        return config.DEFAULT_USER_ID
    token = m.group(1).strip()
    if token and await profiles.get_profile(token) is not None:
        return token
    return config.DEFAULT_USER_ID

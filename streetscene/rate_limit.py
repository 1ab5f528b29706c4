# ─────────────────────────────────────────────────────────────────────────────
# HTTP Rate Limiter — shared slowapi instance
# ─────────────────────────────────────────────────────────────────────────────
# Guards the HTTP layer against request floods per client IP. Model cost is
# protected separately by the per-identity cooldown (services/cooldown.py).
# Own module to avoid circular imports between main.py and the routes.
# ─────────────────────────────────────────────────────────────────────────────


from slowapi import Limiter
from slowapi.util import get_remote_address

from streetscene.config import get_settings

# Cloud Run sets X-Forwarded-For automatically; get_remote_address reads it.
limiter = Limiter(key_func=get_remote_address)


def http_rate_limit() -> str:
    """Limit string for the pipeline routes (slowapi format, e.g. "60/minute")."""
    return get_settings().rate_limit

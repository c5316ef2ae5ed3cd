# ─────────────────────────────────────────────────────────────────────────────
# Rate Limiting — client identity + shared slowapi burst limiter
# ─────────────────────────────────────────────────────────────────────────────
# Two layers:
#   - `limiter` (slowapi): coarse per-IP burst guard on the HTTP route.
#   - UploadQuota (services/quota.py): the daily generation quota.
# Both key on client_identity() so a client is the same client to each.
# Extracted to its own module to avoid circular imports between main.py
# and route modules.
# ─────────────────────────────────────────────────────────────────────────────


from slowapi import Limiter
from starlette.requests import Request

from ps2cam.config import get_settings


def client_identity(request: Request, trust_forwarded: bool = True) -> str | None:
    """Best-effort client network address, or None when nothing is resolvable.

    Behind a proxy (Cloud Run, Vercel, nginx) the socket peer is the proxy,
    so the first X-Forwarded-For hop wins, then X-Real-IP.
    """
    if trust_forwarded:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip

    if request.client and request.client.host:
        return request.client.host
    return None


def _limiter_key(request: Request) -> str:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return client_identity(request, trust_forwarded=settings.trust_forwarded_for) or "anonymous"


limiter = Limiter(key_func=_limiter_key)

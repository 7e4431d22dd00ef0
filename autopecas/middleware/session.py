from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware

from autopecas.services.auth import SESSION_COOKIE_NAME, decode_session


class SessionMiddleware(BaseHTTPMiddleware):
    """Decodifica o cookie de sessão da equipe uma vez por requisição."""

    async def dispatch(self, request, call_next):
        request.state.session_payload = None

        if request.url.path.startswith("/api"):
            token = request.cookies.get(SESSION_COOKIE_NAME)
            if token:
                request.state.session_payload = decode_session(token)

        return await call_next(request)

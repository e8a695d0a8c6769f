from typing import Iterable, Optional
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from cakeshop.auth.dependencies import Authentication
from cakeshop.auth.repository import identify_user_by_pid
from cakeshop.common.constants import request_id_ctx
from cakeshop.common.utils import build_error, json_error
from cakeshop.middlewares.constants import logger


class AuthenticationMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, session_maker, paths: Iterable[str], maybe_auth_paths: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.session_maker = session_maker
        self.paths = tuple(paths)
        # paths that serve anonymous callers but enrich the response for authenticated ones
        self.maybe_auth_paths = tuple(maybe_auth_paths or ())

    async def dispatch(self, request: Request, call_next):

        if any(request.url.path.startswith(p) for p in self.paths):
            return await call_next(request)

        optional = any(request.url.path.startswith(p) for p in self.maybe_auth_paths)
        if optional and not request.headers.get("Authorization"):
            return await call_next(request)

        logger.debug("auth.middleware.attempt", extra={
            "path": request.url.path,
            "method": request.method
        })

        try:
            auth_token = await Authentication()(request)
        except Exception as e:
            if optional:
                return await call_next(request)
            reason = getattr(e, "detail", "Missing or Invalid Auth Headers")
            logger.warning("auth.middleware.failed", extra={
                "reason": reason,
                "path": request.url.path,
                "method": request.method
            })
            payload = build_error(code="INVALID_AUTH", details={"message":"Missing or Invalid Auth Headers"}, request_id=request_id_ctx.get(None))
            return json_error(payload, status_code=status.HTTP_401_UNAUTHORIZED)

        user_pid = auth_token.get("sub")

        async with self.session_maker() as session:
            user_identifier = await identify_user_by_pid(session, user_pid)

        if not user_identifier:
            logger.warning("auth.middleware.user_not_found", extra={
                "user_public_id": user_pid,
                "path": request.url.path
            })
            payload = build_error(code="INVALID_AUTH", details={"message":"User unidentified and not authorized"}, request_id=request_id_ctx.get(None))
            return json_error(payload, status_code=status.HTTP_403_FORBIDDEN)

        user_id, role = user_identifier
        request.state.user_identifier = user_id
        request.state.user_public_id = user_pid  # for logging
        # role comes from the row, not the token claim, so demotions apply immediately
        request.state.user_role = role

        return await call_next(request)

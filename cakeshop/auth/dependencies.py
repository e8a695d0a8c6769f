from typing import Optional
from fastapi import Request, HTTPException, status
from fastapi.security import HTTPBearer, http

from cakeshop.auth.utils import decode_token
from cakeshop.common.custom_exceptions import Forbidden
from cakeshop.schema.full_schema import UserRoleName


class Authentication(HTTPBearer):
    def __init__(self,auto_error=True):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request:Request) -> dict | None:
        auth_creds=await super().__call__(request)
        if auth_creds is None:
            return None
        token=auth_creds.credentials

        decoded_token=decode_token(token)

        if not decoded_token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,detail="Invalid or expired token provided.")

        return decoded_token


def get_current_user_id(request: Request) -> int:
    user_id = getattr(request.state, "user_identifier", None)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user_id


def get_optional_user_id(request: Request) -> Optional[int]:
    return getattr(request.state, "user_identifier", None)


def is_admin(request: Request) -> bool:
    return getattr(request.state, "user_role", None) == UserRoleName.ADMIN.value


def require_admin(request: Request) -> int:
    user_id = get_current_user_id(request)
    if not is_admin(request):
        raise Forbidden("Admin access required")
    return user_id

"""FastAPI dependencies: caller identity and the service container.

Authentication happens upstream; the auth gateway forwards the verified user
id in the X-User-Id header.

Usage in any protected router:
    from src.tm_gateway.auth.dependencies import get_current_user_id

    @router.post("/protected")
    async def protected(user_id: str = Depends(get_current_user_id)):
        ...
"""

from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from src.tm_gateway.container import Container

_MISSING_IDENTITY = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Missing caller identity",
)


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    if not x_user_id or not x_user_id.strip():
        raise _MISSING_IDENTITY
    return x_user_id.strip()


def get_container(request: Request) -> Container:
    return request.app.state.container

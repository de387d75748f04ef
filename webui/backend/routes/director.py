"""Director gateway and image-prompt conversation routes."""
from __future__ import annotations

from litestar import Request, Response, post
from litestar.datastructures import Cookie

from directorcore.config import CONTEXT_COOKIE_NAME
from directorcore.director import DirectorService

TOKEN_HEADER = "X-Conversation-Token"


@post("/api/director", status_code=200)
async def run_director(request: Request, service: DirectorService) -> Response:
    raw = await request.body()
    status, result = await service.handle(request.headers, raw)
    return Response(content=result.to_json_dict(), status_code=status)


@post("/api/image-prompt", status_code=200)
async def run_image_prompt_stage(request: Request, service: DirectorService) -> Response:
    token = request.cookies.get(CONTEXT_COOKIE_NAME) or request.headers.get(TOKEN_HEADER)
    reply = await service.handle_stage(request.headers, await request.body(), token)

    cookies = []
    if reply.token:
        cookies.append(Cookie(
            key=CONTEXT_COOKIE_NAME,
            value=reply.token,
            max_age=service.codec.ttl,
            path="/",
            httponly=True,
            samesite="lax",
        ))
    return Response(content=reply.body, status_code=reply.status, cookies=cookies)


@post("/api/image-prompt/reset", status_code=200)
async def reset_image_prompt() -> Response:
    """Forget the conversation so the next call starts again at seed."""
    expired = Cookie(key=CONTEXT_COOKIE_NAME, value="", max_age=0, path="/", httponly=True, samesite="lax")
    return Response(content={"ok": True}, cookies=[expired])

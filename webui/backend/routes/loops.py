"""Loop assistant chat and incremental loop-cycle routes."""
from __future__ import annotations

from litestar import Request, Response, post

from directorcore.director import DirectorService


@post("/api/loop-assistant", status_code=200)
async def loop_assistant(request: Request, service: DirectorService) -> Response:
    status, body = await service.handle_loop_assistant(request.headers, await request.body())
    return Response(content=body, status_code=status)


@post("/api/loop-cycle", status_code=200)
async def next_loop_cycle(request: Request, service: DirectorService) -> Response:
    status, body = await service.handle_loop_cycle(request.headers, await request.body())
    return Response(content=body, status_code=status)

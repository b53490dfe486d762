"""FastAPI front end for the diffuser gateway.

Thin HTTP layer: parse parameters, submit the matching manager coroutine to
the manager's loop thread, answer. No handler touches manager state.

Parameters come from an urlencoded or multipart form body, or from the
query string. A body value wins when both carry the same name.

    GET  /, /state, /status          JSON snapshot
    GET|POST /query                  ask device for status, then snapshot
    GET  /water                      "low" or "high"
    POST /lighton      autoOffSecs, mode, color
    POST /lightcolor   color
    POST /lightdim     dim=0..100
    POST /lightoff, DELETE /lighton
    POST /diffuseron|/smokeon  autoOffSecs
    POST /diffuseroff|/smokeoff, DELETE /diffuseron|/smokeon
"""

import logging
import time
from email.utils import formatdate
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from codec import LightMode, parse_int32
from constants import DEFAULT_AUTO_OFF_SECONDS

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Expires": formatdate(0, usegmt=True),
    "Cache-Control": "no-cache, private, max-age=0",
    "Pragma": "no-cache",
    "X-Accel-Expires": "0",
}


class BadRequest(Exception):
    """Invalid control request parameter; answered with 400."""


app = FastAPI(title="Smokey Diffuser Gateway")

# Set by smokey.py at startup
_manager = None
_runner = None


def set_manager(manager, runner):
    """Inject the Manager and the LoopThread it runs on."""
    global _manager, _runner
    _manager = manager
    _runner = runner


async def _call(coro):
    """Run a manager coroutine on the manager's loop and await the result."""
    return await _runner.submit_async(coro)


# --- Middleware / errors ---

@app.middleware("http")
async def no_cache(request: Request, call_next):
    started = time.monotonic()
    if _manager is None or _runner is None:
        response = PlainTextResponse("Manager not initialized", status_code=503)
    else:
        response = await call_next(request)
    for key, value in NO_CACHE_HEADERS.items():
        response.headers[key] = value
    logger.info("serving %s %s: %d (%.0fms)", request.method, request.url.path,
                response.status_code, (time.monotonic() - started) * 1000)
    return response


@app.exception_handler(BadRequest)
async def bad_request(request: Request, exc: BadRequest):
    logger.error("%s", exc)
    return PlainTextResponse(str(exc), status_code=400)


def _no_content() -> Response:
    return Response(status_code=204)


async def _params(request: Request) -> dict[str, str]:
    params = dict(request.query_params)
    form = await request.form()
    # File uploads are not parameters
    params.update((key, value) for key, value in form.items() if isinstance(value, str))
    return params


def _auto_off_secs(params: dict[str, str], what: str) -> int:
    raw = params.get("autoOffSecs", "")
    if not raw:
        return DEFAULT_AUTO_OFF_SECONDS
    try:
        return parse_int32(raw)
    except ValueError:
        raise BadRequest(f"bad autoOffSecs for {what}: {raw!r}") from None


# --- State ---

@app.get("/")
@app.get("/state")
@app.get("/status")
async def manager_state():
    state: Optional[str] = await _call(_manager.current_state())
    if state is None:
        error = "Unable to get state from manager"
        logger.error(error)
        return PlainTextResponse(error, status_code=500)
    return Response(content=state, media_type="application/json")


@app.get("/query")
@app.post("/query")
async def manager_query_status():
    await _call(_manager.query_status())
    return await manager_state()


@app.get("/water")
async def manager_state_water():
    water = await _call(_manager.current_water_state())
    return PlainTextResponse(water)


# --- Light ---

@app.post("/lighton")
async def light_on(request: Request):
    params = await _params(request)
    auto_off_secs = _auto_off_secs(params, "lighton")
    mode = LightMode.CRAZY
    mode_str = params.get("mode", "")
    if mode_str:
        try:
            mode = LightMode.from_name(mode_str)
        except ValueError as e:
            raise BadRequest(f"bad mode for lighton: {e}") from None
    color = params.get("color", "")
    await _call(_manager.set_light_on(auto_off_secs, mode, color))
    return _no_content()


@app.post("/lightoff")
@app.delete("/lighton")
async def light_off():
    await _call(_manager.set_light_off())
    return _no_content()


@app.post("/lightcolor")
async def light_color(request: Request):
    params = await _params(request)
    await _call(_manager.set_light_color(params.get("color", "")))
    return _no_content()


@app.post("/lightdim")
async def light_dim(request: Request):
    dim_str = (await _params(request)).get("dim", "")
    try:
        dim = parse_int32(dim_str)
    except ValueError:
        raise BadRequest(f"bad value for lightdim {dim_str!r}") from None
    if dim < 0 or dim > 100:
        raise BadRequest(f"bad dim: {dim_str}. Should be between 0 and 100")
    await _call(_manager.set_light_dim(dim))
    return _no_content()


# --- Diffuser ---

@app.post("/diffuseron")
@app.post("/smokeon")
async def diffuser_on(request: Request):
    auto_off_secs = _auto_off_secs(await _params(request), "diffuseron")
    await _call(_manager.set_diffuser_on(auto_off_secs))
    return _no_content()


@app.post("/diffuseroff")
@app.post("/smokeoff")
@app.delete("/diffuseron")
@app.delete("/smokeon")
async def diffuser_off():
    await _call(_manager.set_diffuser_off())
    return _no_content()

from __future__ import annotations

import json
import logging
import os
import secrets
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Generator, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, StreamingResponse
from starlette.concurrency import iterate_in_threadpool, run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .llm import OllamaClient, OllamaError
from .settings import SettingsManager
from .templates import render_index_page
from .travel import TripError, build_travel_prompt, parse_sections, validate_trip
from .users import (
    SESSION_COOKIE,
    InvalidCredentials,
    SessionSigner,
    UserError,
    UserExists,
    UserStore,
    UserStoreUnavailable,
)
from .weather import InvalidQuery, LocationNotFound, WeatherClient, WeatherError

DATA_DIR = Path(os.environ.get("WEBUI_DATA_DIR", "data"))
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOG_FILE = DATA_DIR / "server.log"
SETTINGS_PATH = DATA_DIR / "config.json"
USERS_PATH = DATA_DIR / "users.json"


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger("webui")
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler = RotatingFileHandler(
        LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.INFO)
    stream_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False
    logger.debug("Logging initialised, writing to %s", LOG_FILE)
    return logger


logger = _configure_logging()


def _session_secret() -> str:
    secret = os.environ.get("WEBUI_SESSION_SECRET")
    if secret:
        return secret
    logger.warning("WEBUI_SESSION_SECRET is not set; sessions will not survive a restart.")
    return secrets.token_hex(32)


app = FastAPI()

settings_manager = SettingsManager(SETTINGS_PATH)
_auth_settings = settings_manager.section("auth")
user_store = UserStore(
    USERS_PATH, min_password_length=int(_auth_settings.get("min_password_length", 6))
)
session_signer = SessionSigner(
    _session_secret(), max_age=int(_auth_settings.get("session_max_age", 28800))
)

llm_status: Dict[str, str] = {"state": "warn", "label": "LLM Unknown"}


class BadRequest(ValueError):
    pass


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _read_json(request: Request) -> Dict[str, Any]:
    body_bytes = await request.body()
    if not body_bytes.strip():
        return {}
    try:
        data = json.loads(body_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise BadRequest("Body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise BadRequest("Body must be a JSON object")
    return data


async def _read_prompt(request: Request) -> str:
    body = await _read_json(request)
    prompt = body.get("prompt")
    prompt = str(prompt) if prompt else ""
    if not prompt.strip():
        raise BadRequest("Missing prompt")
    return prompt


def _ollama_client() -> OllamaClient:
    return OllamaClient(settings_manager.ollama_snapshot())


def _set_session(response: JSONResponse, user_id: str) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session_signer.issue(user_id),
        max_age=session_signer.max_age,
        httponly=True,
        samesite="lax",
        path="/",
    )


def optional_user(request: Request) -> Optional[str]:
    user_id = session_signer.read(request.cookies.get(SESSION_COOKIE))
    if not user_id:
        return None
    try:
        known = user_store.exists(user_id)
    except UserStoreUnavailable:
        return None
    return user_id if known else None


async def relay_body(fragments: Generator[str, None, None]) -> AsyncIterator[str]:
    """
    Pull fragments from a blocking generator in the threadpool.

    Starlette never closes a sync body iterator, so this closes it when the
    response ends or the client disconnects, which releases the upstream.
    """
    try:
        async for fragment in iterate_in_threadpool(fragments):
            yield fragment
    finally:
        # No awaiting here: a cancelled task would abort it.
        fragments.close()


def current_user(user_id: Optional[str] = Depends(optional_user)) -> str:
    if not user_id:
        raise StarletteHTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not signed in")
    return user_id


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(str(exc.detail), exc.status_code)


@app.exception_handler(BadRequest)
async def bad_request_handler(request: Request, exc: BadRequest) -> JSONResponse:
    return _error(str(exc), status.HTTP_400_BAD_REQUEST)


@app.on_event("startup")
async def on_startup() -> None:
    ollama = settings_manager.ollama_snapshot()
    logger.info("Application startup complete (ollama=%s model=%s).", ollama.host, ollama.model)


@app.get("/", response_class=HTMLResponse)
async def index(user_id: Optional[str] = Depends(optional_user)) -> HTMLResponse:
    html = render_index_page(
        settings=settings_manager.settings,
        user_id=user_id,
        status=llm_status,
    )
    return HTMLResponse(html)


@app.get("/config", response_class=JSONResponse)
async def get_config() -> JSONResponse:
    # Always reread so the page shows what is really on disk.
    return JSONResponse(settings_manager.reload())


@app.post("/chat")
async def chat(request: Request) -> JSONResponse:
    prompt = await _read_prompt(request)
    client = _ollama_client()
    try:
        answer = await run_in_threadpool(client.generate, prompt)
    except OllamaError as exc:
        logger.error("Chat request failed: %s", exc)
        return _error(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.info("Answered chat prompt (%d chars -> %d chars)", len(prompt), len(answer))
    return JSONResponse({"answer": answer})


@app.post("/chat-stream")
async def chat_stream(request: Request):
    try:
        prompt = await _read_prompt(request)
    except BadRequest as exc:
        return PlainTextResponse(
            f"Stream error: {exc}", status_code=status.HTTP_400_BAD_REQUEST
        )
    client = _ollama_client()
    try:
        upstream = await run_in_threadpool(client.open_stream, prompt)
    except OllamaError as exc:
        logger.error("Stream request rejected: %s", exc)
        return PlainTextResponse(
            str(exc), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    logger.info("Relaying stream for prompt of %d chars", len(prompt))
    return StreamingResponse(
        relay_body(client.relay_response(upstream)),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache"},
    )


@app.get("/health/ollama", response_class=JSONResponse)
async def ollama_health() -> JSONResponse:
    ok = await run_in_threadpool(_ollama_client().ping)
    state = "ok" if ok else "warn"
    label = "LLM Connected" if ok else "LLM Offline"
    llm_status["state"] = state
    llm_status["label"] = label
    return JSONResponse({"status": state, "label": label})


@app.post("/api/signup")
async def signup(request: Request) -> JSONResponse:
    body = await _read_json(request)
    user_id = str(body.get("userId") or "").strip()
    password = body.get("password") or ""
    try:
        await run_in_threadpool(user_store.create, user_id, password)
    except UserExists as exc:
        return _error(str(exc), status.HTTP_409_CONFLICT)
    except UserStoreUnavailable as exc:
        return _error(str(exc), status.HTTP_503_SERVICE_UNAVAILABLE)
    except UserError as exc:
        return _error(str(exc), status.HTTP_400_BAD_REQUEST)
    response = JSONResponse({"ok": True, "userId": user_id})
    _set_session(response, user_id)
    return response


@app.post("/api/signin")
async def signin(request: Request) -> JSONResponse:
    body = await _read_json(request)
    user_id = str(body.get("userId") or "").strip()
    password = body.get("password") or ""
    try:
        verified = await run_in_threadpool(user_store.verify, user_id, password)
    except UserStoreUnavailable as exc:
        return _error(str(exc), status.HTTP_503_SERVICE_UNAVAILABLE)
    if not verified:
        logger.info("Failed sign in for %s", user_id)
        return _error("Invalid user id or password.", status.HTTP_401_UNAUTHORIZED)
    response = JSONResponse({"ok": True, "userId": user_id})
    _set_session(response, user_id)
    logger.info("Signed in %s", user_id)
    return response


@app.post("/api/signout")
async def signout() -> JSONResponse:
    response = JSONResponse({"ok": True})
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response


@app.get("/api/me")
async def me(user_id: Optional[str] = Depends(optional_user)) -> JSONResponse:
    if not user_id:
        return JSONResponse({"signedIn": False})
    return JSONResponse({"signedIn": True, "userId": user_id})


@app.post("/api/change-password")
async def change_password(request: Request, user_id: str = Depends(current_user)) -> JSONResponse:
    body = await _read_json(request)
    try:
        await run_in_threadpool(
            user_store.change_password,
            user_id,
            body.get("currentPassword") or "",
            body.get("newPassword") or "",
        )
    except InvalidCredentials as exc:
        return _error(str(exc), status.HTTP_401_UNAUTHORIZED)
    except UserStoreUnavailable as exc:
        return _error(str(exc), status.HTTP_503_SERVICE_UNAVAILABLE)
    except UserError as exc:
        return _error(str(exc), status.HTTP_400_BAD_REQUEST)
    return JSONResponse({"ok": True})


@app.post("/api/delete-account")
async def delete_account(request: Request, user_id: str = Depends(current_user)) -> JSONResponse:
    body = await _read_json(request)
    try:
        await run_in_threadpool(user_store.delete, user_id, body.get("password") or "")
    except InvalidCredentials as exc:
        return _error(str(exc), status.HTTP_401_UNAUTHORIZED)
    except UserStoreUnavailable as exc:
        return _error(str(exc), status.HTTP_503_SERVICE_UNAVAILABLE)
    response = JSONResponse({"ok": True})
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response


@app.post("/api/travel-plan")
async def travel_plan(request: Request, user_id: str = Depends(current_user)) -> JSONResponse:
    body = await _read_json(request)
    try:
        trip = validate_trip(body.get("destination"), body.get("startDate"), body.get("endDate"))
    except TripError as exc:
        return _error(str(exc), status.HTTP_400_BAD_REQUEST)
    client = _ollama_client()
    try:
        answer = await run_in_threadpool(client.generate, build_travel_prompt(trip))
    except OllamaError as exc:
        logger.error("Travel plan for %s failed: %s", user_id, exc)
        return _error(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.info("Planned %d day trip to %s for %s", trip.days, trip.destination, user_id)
    return JSONResponse(
        {
            "destination": trip.destination,
            "startDate": trip.start.isoformat(),
            "endDate": trip.end.isoformat(),
            "answer": answer,
            "sections": parse_sections(answer),
        }
    )


@app.get("/api/weather")
async def weather(
    city: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    user_id: str = Depends(current_user),
) -> JSONResponse:
    client = WeatherClient(settings_manager.section("weather"))
    try:
        data = await run_in_threadpool(
            lambda: client.lookup(city=city, latitude=latitude, longitude=longitude)
        )
    except LocationNotFound as exc:
        return _error(str(exc), status.HTTP_404_NOT_FOUND)
    except InvalidQuery as exc:
        return _error(str(exc), status.HTTP_400_BAD_REQUEST)
    except WeatherError as exc:
        logger.error("Weather lookup failed: %s", exc)
        return _error(str(exc), status.HTTP_502_BAD_GATEWAY)
    return JSONResponse(data)


# Convenience include for uvicorn.
__all__ = ["app"]

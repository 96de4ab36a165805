# main.py - FastAPI app: sandbox lifecycle, code apply and generation endpoints

from __future__ import annotations

from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse, JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional
import os
import json
import uvicorn
from loguru import logger

from config.app_config import configure_logging
from routes import (
    apply_ai_code,
    apply_ai_code_stream,
    create_ai_sandbox,
    detect_and_install_packages,
    generate_ai_stream,
    get_sandbox_files,
    install_packages,
    kill_sandbox,
    restore_sandbox,
    sandbox_status,
)
from sandbox.state_store import SandboxStateStore
from shared_state import AppServices, build_services

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


# --- Utility Functions ---
def create_error_response(message: str, status: int = 500) -> JSONResponse:
    logger.warning(f"[main] Error response ({status}): {message}")
    return CustomJSONResponse(content={"success": False, "error": message}, status_code=status)


class CustomJSONEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, bytes):
            return obj.decode('utf-8', errors='replace')
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class CustomJSONResponse(JSONResponse):
    def render(self, content: Any) -> bytes:
        return json.dumps(
            content, ensure_ascii=False, allow_nan=False, indent=None,
            separators=(",", ":"), cls=CustomJSONEncoder
        ).encode("utf-8")


def respond(result: Dict[str, Any]) -> JSONResponse:
    """Route results carry an optional ``status``; it becomes the HTTP status code."""
    payload = dict(result)
    status = payload.pop("status", 200)
    if status >= 400:
        logger.warning(f"[main] {status}: {payload.get('error')}")
    return CustomJSONResponse(content=payload, status_code=status)


def respond_stream(result: Any):
    if isinstance(result, dict):
        return respond(result)
    return StreamingResponse(result, media_type="text/event-stream", headers=SSE_HEADERS)


async def read_body(request: Request, required: bool = True) -> Optional[Dict[str, Any]]:
    try:
        body = await request.json()
    except ValueError:
        return None if required else {}
    return body if isinstance(body, dict) else None


def get_services(request: Request) -> AppServices:
    return request.app.state.services


# --- App factory ---
def create_app(services: Optional[AppServices] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is None:
            configure_logging()
            app.state.services = build_services(state_store=SandboxStateStore())
        else:
            app.state.services = services
        logger.info("[main] Backend starting...")
        yield
        logger.info("[main] Backend shutting down...")
        await app.state.services.manager.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health(services: AppServices = Depends(get_services)):
        return {
            "status": "healthy",
            "e2bConfigured": bool(os.getenv("E2B_API_KEY")),
            "generationEnabled": services.generator is not None,
            "sandboxState": services.manager.state.value,
        }

    # --- Sandbox Management ---
    @app.post("/api/create-ai-sandbox")
    async def api_create_ai_sandbox(services: AppServices = Depends(get_services)):
        return respond(await create_ai_sandbox.POST(services))

    @app.post("/api/kill-sandbox")
    async def api_kill_sandbox(services: AppServices = Depends(get_services)):
        return respond(await kill_sandbox.POST(services))

    @app.get("/api/sandbox-status")
    async def api_sandbox_status(sandbox: Optional[str] = None, services: AppServices = Depends(get_services)):
        return respond(await sandbox_status.GET(services, sandbox))

    @app.post("/api/restore-sandbox")
    async def api_restore_sandbox(request: Request, services: AppServices = Depends(get_services)):
        body = await read_body(request, required=False)
        if body is None:
            return create_error_response("Invalid JSON body", 400)
        return respond(await restore_sandbox.POST(services, body))

    # --- Code Generation and Application ---
    @app.post("/api/generate-ai-code-stream")
    async def api_generate_ai_code_stream(request: Request, services: AppServices = Depends(get_services)):
        body = await read_body(request)
        if body is None:
            return create_error_response("Invalid JSON body", 400)
        return respond_stream(await generate_ai_stream.POST(services, body))

    @app.post("/api/apply-ai-code")
    async def api_apply_ai_code(request: Request, services: AppServices = Depends(get_services)):
        body = await read_body(request)
        if body is None:
            return create_error_response("Invalid JSON body", 400)
        return respond(await apply_ai_code.POST(services, body))

    @app.post("/api/apply-ai-code-stream")
    async def api_apply_ai_code_stream(request: Request, services: AppServices = Depends(get_services)):
        body = await read_body(request)
        if body is None:
            return create_error_response("Invalid JSON body", 400)
        return respond_stream(await apply_ai_code_stream.POST(services, body))

    # --- Conversation Management ---
    @app.api_route("/api/conversation-state", methods=["GET", "POST", "DELETE"])
    async def api_conversation_state(request: Request, services: AppServices = Depends(get_services)):
        store = services.conversations
        if request.method == "GET":
            return respond(store.GET())
        if request.method == "DELETE":
            return respond(store.DELETE())
        body = await read_body(request)
        if body is None:
            return create_error_response("Invalid JSON body", 400)
        return respond(store.POST(body))

    # --- Packages and Files ---
    @app.post("/api/install-packages")
    async def api_install_packages(request: Request, services: AppServices = Depends(get_services)):
        body = await read_body(request)
        if body is None:
            return create_error_response("Invalid JSON body", 400)
        return respond(await install_packages.POST(services, body))

    @app.post("/api/detect-and-install-packages")
    async def api_detect_and_install_packages(request: Request, services: AppServices = Depends(get_services)):
        body = await read_body(request)
        if body is None:
            return create_error_response("Invalid JSON body", 400)
        return respond(await detect_and_install_packages.POST(services, body))

    @app.get("/api/get-sandbox-files")
    async def api_get_sandbox_files(services: AppServices = Depends(get_services)):
        return respond(await get_sandbox_files.GET(services))

    return app


app = create_app()

# --- Main Entrypoint ---
if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    logger.info(f"[main] Backend ready and running on http://localhost:{port}")
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=False)

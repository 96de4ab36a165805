# generate_ai_stream.py - POST /api/generate-ai-code-stream (Server-Sent Events)

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, Union

from loguru import logger

from codegen.stream import consume_code_stream
from routes.apply_ai_code_stream import sse
from shared_state import AppServices


async def stream_generate_code(
    services: AppServices, prompt: str, is_edit: bool, context: Dict[str, Any]
) -> AsyncIterator[str]:
    yield sse({"type": "status", "message": "Initializing AI..."})
    try:
        async for event in consume_code_stream(services.generator.stream(prompt, is_edit, context)):
            yield sse(event)
    except Exception as e:
        logger.error(f"[generate-ai-code-stream] Error: {e}")
        yield sse({"type": "error", "error": str(e)})


async def POST(services: AppServices, body: Dict[str, Any]) -> Union[Dict[str, Any], AsyncIterator[str]]:
    prompt = body.get("prompt")
    if not prompt or not isinstance(prompt, str):
        return {"success": False, "error": "prompt is required", "status": 400}
    if services.generator is None:
        return {"success": False, "error": "AI code generation is not configured (set AI_MODEL)", "status": 501}

    is_edit = bool(body.get("isEdit", False))
    context = dict(body.get("context") or {})
    if is_edit and "currentFiles" not in context and len(services.file_cache):
        context["currentFiles"] = {path: cached.content for path, cached in services.file_cache.files.items()}

    services.conversations.add_message("user", prompt, {"isEdit": is_edit})
    logger.info(f"[generate-ai-code-stream] Generating, isEdit: {is_edit}")
    return stream_generate_code(services, prompt, is_edit, context)

# apply_ai_code.py - POST /api/apply-ai-code

from typing import Any, Dict, List, Tuple

from loguru import logger

from codegen.apply import ApplyOutcome
from codegen.parser import ParsedResponse, parse_ai_response
from shared_state import AppServices


def read_apply_body(body: Dict[str, Any]) -> Tuple[str, bool, List[Any]]:
    """Return ``(response, isEdit, packages)``; raises ValueError on malformed input."""
    response_text = body.get("response")
    if not response_text or not isinstance(response_text, str):
        raise ValueError("response is required")
    packages = body.get("packages") or []
    if not isinstance(packages, list):
        raise ValueError("packages must be a list")
    return response_text, bool(body.get("isEdit", False)), packages


def outcome_payload(outcome: ApplyOutcome) -> Dict[str, Any]:
    results = outcome.results
    applied = len(results.filesCreated) + len(results.filesUpdated)
    if outcome.preview:
        message = f"Parsed {len(outcome.parsedFiles)} files (no active sandbox, nothing applied)"
    else:
        message = f"Applied {applied} files"
        if results.packagesInstalled:
            message += f", installed {len(results.packagesInstalled)} packages"
        if results.errors:
            message += f", {len(results.errors)} errors"
    return {
        "success": True,
        "results": results.model_dump(),
        "explanation": outcome.explanation,
        "structure": outcome.structure,
        "parsedFiles": [f.model_dump() for f in outcome.parsedFiles],
        "warnings": outcome.warnings,
        "preview": outcome.preview,
        "message": message,
    }


def record_outcome(services: AppServices, parsed: ParsedResponse, outcome: ApplyOutcome, is_edit: bool) -> None:
    if outcome.preview:
        return
    services.conversations.record_applied_code(
        outcome.results.filesCreated + outcome.results.filesUpdated, parsed.explanation, is_edit
    )


async def POST(services: AppServices, body: Dict[str, Any]) -> Dict[str, Any]:
    try:
        response_text, is_edit, packages = read_apply_body(body)
    except ValueError as e:
        return {"success": False, "error": str(e), "status": 400}

    logger.info(f"[apply-ai-code] Processing {len(response_text)} chars, isEdit: {is_edit}")
    parsed = parse_ai_response(response_text)
    outcome = await services.pipeline.apply(parsed, packages, is_edit=is_edit)
    record_outcome(services, parsed, outcome, is_edit)
    return outcome_payload(outcome)

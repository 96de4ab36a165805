# codegen/generation.py - streams tagged React code from a LangChain chat model

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, Optional

from langchain.chat_models import init_chat_model
from langchain_core.language_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from loguru import logger

from config.app_config import appConfig

SYSTEM_PROMPT = """You are an expert React developer for Vite applications. Follow these rules exactly.

CRITICAL RULES:
1. FILE COMPLETENESS: Generate ALL files in FULL. Never use `...` or truncate code.
2. IMPORT-COMPONENT MATCHING: every component App.jsx imports must be generated.
3. STANDARD TAILWIND ONLY: do not invent class names like `bg-background`.
4. SYNTAX: straight quotes only, close every tag, bracket and parenthesis.
5. NO CONFIG FILES: never generate tailwind.config.js, vite.config.js or package.json.

OUTPUT FORMAT - USE THIS EXACT XML FORMAT:

<file path="src/App.jsx">
...complete file content...
</file>

Declare npm packages your code imports (besides react and react-dom) with
<package>name</package> or a <packages> block, one name per line.
Shell commands to run afterwards go in <command>...</command>.
Finish with a short <explanation>...</explanation> of what you built.
"""

EDIT_INSTRUCTIONS = """You are EDITING an existing app. Only output the files that change,
each one in full. Keep every other file as it is."""


def build_chat_model(model_name: Optional[str] = None) -> Optional[BaseChatModel]:
    """Build the configured chat model, or None when no model is configured."""
    name = model_name or appConfig.ai.model
    if not name:
        return None
    logger.info(f"[generate-ai-code] Using model: {name}")
    return init_chat_model(name, temperature=appConfig.ai.temperature, max_tokens=appConfig.ai.maxTokens)


def build_full_prompt(prompt: str, is_edit: bool = False, context: Optional[Dict[str, Any]] = None) -> str:
    context = context or {}
    sections = []

    conversation = context.get("conversationContext")
    if conversation:
        sections.append(f"CONVERSATION CONTEXT:\n{conversation}")

    current_files = context.get("currentFiles") or {}
    if is_edit and current_files:
        sections.append(EDIT_INSTRUCTIONS)
        for path, content in current_files.items():
            sections.append(f'<file path="{path}">\n{content}\n</file>')

    sections.append(f"USER REQUEST:\n{prompt}")
    return "\n\n".join(sections)


class CodeGenerator:
    """``ChatPromptTemplate | model | StrOutputParser`` streamed chunk by chunk."""

    def __init__(self, chat_model: BaseChatModel):
        generation_prompt = ChatPromptTemplate.from_messages([
            ("system", "{system_prompt}"),
            ("human", "{full_prompt}"),
        ])
        self._chain = generation_prompt | chat_model | StrOutputParser()

    async def stream(
        self, prompt: str, is_edit: bool = False, context: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[str]:
        full_prompt = build_full_prompt(prompt, is_edit, context)
        logger.info(f"[generate-ai-code] Streaming generation, isEdit: {is_edit}")
        async for chunk in self._chain.astream({"system_prompt": SYSTEM_PROMPT, "full_prompt": full_prompt}):
            yield chunk

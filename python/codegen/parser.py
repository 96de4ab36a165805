# codegen/parser.py - tagged AI output -> ParsedResponse

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict

FILE_OPEN = re.compile(r'<file\s+path="([^"]+)"\s*>')
FILE_BOUNDARY = re.compile(r'<file\s')
FILE_CLOSE = '</file>'

# a bare "..." that is not a spread/rest operator
ELLIPSIS = re.compile(r'\.\.\.(?![\w$\[{(])')


class ParsedFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    isComplete: bool = True
    isSuspect: bool = False


class ParsedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: List[ParsedFile] = []
    packages: List[str] = []
    commands: List[str] = []
    structure: Optional[str] = None
    explanation: str = ""
    warnings: List[str] = []


@dataclass
class FileOccurrence:
    path: str
    content: str
    closed: bool


def is_suspect(content: str) -> bool:
    return ELLIPSIS.search(content) is not None


class TagScanner:
    """Walks the tag boundaries of one AI response."""

    def __init__(self, text: str):
        self.text = text

    def file_occurrences(self) -> Iterator[FileOccurrence]:
        """Yield every ``<file path="...">`` occurrence in order.

        A body ends at the first ``</file>`` if one comes before the next
        ``<file`` opening tag; otherwise it runs up to that opening tag (or
        end of input) and the occurrence is unterminated.
        """
        text = self.text
        pos = 0
        while True:
            opening = FILE_OPEN.search(text, pos)
            if opening is None:
                return
            body_start = opening.end()
            boundary = FILE_BOUNDARY.search(text, body_start)
            body_limit = boundary.start() if boundary else len(text)
            close = text.find(FILE_CLOSE, body_start, body_limit)

            if close != -1:
                yield FileOccurrence(opening.group(1), text[body_start:close].strip(), True)
                pos = close + len(FILE_CLOSE)
            else:
                yield FileOccurrence(opening.group(1), text[body_start:body_limit].strip(), False)
                pos = body_limit

    def closed_blocks(self, tag: str) -> Iterator[str]:
        """Yield the raw bodies of every closed ``<tag>...</tag>`` pair."""
        open_tag, close_tag = f"<{tag}>", f"</{tag}>"
        pos = 0
        while True:
            start = self.text.find(open_tag, pos)
            if start == -1:
                return
            body_start = start + len(open_tag)
            end = self.text.find(close_tag, body_start)
            if end == -1:
                return
            yield self.text[body_start:end]
            pos = end + len(close_tag)

    def first_block(self, tag: str) -> Optional[str]:
        return next(self.closed_blocks(tag), None)


def _should_replace(existing: Optional[FileOccurrence], candidate: FileOccurrence) -> bool:
    if existing is None:
        return True
    if candidate.closed and not existing.closed:
        return True
    if candidate.closed == existing.closed:
        return len(candidate.content) > len(existing.content)
    return False


def _select_files(scanner: TagScanner, warnings: List[str]) -> List[ParsedFile]:
    chosen: Dict[str, FileOccurrence] = {}
    for occurrence in scanner.file_occurrences():
        existing = chosen.get(occurrence.path)
        if not _should_replace(existing, occurrence):
            continue
        # a closed version always replaces an unterminated one, ellipsis or not
        if (
            existing is not None
            and existing.closed == occurrence.closed
            and is_suspect(occurrence.content)
            and not is_suspect(existing.content)
        ):
            logger.warning(f"[parse_ai_response] Ignoring {occurrence.path} version with ellipsis, keeping previous")
            continue
        if existing is not None:
            logger.info(f"[parse_ai_response] Replacing {occurrence.path} with a better version")
        chosen[occurrence.path] = occurrence

    files: List[ParsedFile] = []
    for path, occurrence in chosen.items():
        suspect = is_suspect(occurrence.content)
        if not occurrence.closed:
            warnings.append(f"File {path} appears to be truncated (no closing tag)")
        if suspect:
            warnings.append(f"File {path} contains ellipsis, may be truncated")
        files.append(ParsedFile(path=path, content=occurrence.content, isComplete=occurrence.closed, isSuspect=suspect))
    return files


def _parse_packages(scanner: TagScanner) -> List[str]:
    packages = [p.strip() for p in scanner.closed_blocks("package") if p.strip()]
    for block in scanner.closed_blocks("packages"):
        packages.extend(p.strip() for p in re.split(r'[\n,]+', block) if p.strip())
    return packages


def parse_ai_response(response: str) -> ParsedResponse:
    """Parse tagged model output into files, packages, commands, structure and explanation.

    Pure: the same input always yields the same result and nothing outside
    the returned value is touched.
    """
    scanner = TagScanner(response)
    warnings: List[str] = []

    files = _select_files(scanner, warnings)
    packages = _parse_packages(scanner)
    commands = [c.strip() for c in scanner.closed_blocks("command") if c.strip()]

    structure = scanner.first_block("structure")
    explanation = scanner.first_block("explanation")

    for message in warnings:
        logger.warning(f"[parse_ai_response] {message}")
    logger.info(f"[parse_ai_response] Parsed {len(files)} files, {len(packages)} packages, {len(commands)} commands")

    return ParsedResponse(
        files=files,
        packages=packages,
        commands=commands,
        structure=structure.strip() if structure is not None else None,
        explanation=explanation.strip() if explanation is not None else "",
        warnings=warnings,
    )

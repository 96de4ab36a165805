# codegen/stream.py - incremental consumer for streamed model output

from __future__ import annotations

import re
from typing import Any, AsyncIterable, AsyncIterator, Dict, List

PACKAGE_TAG = re.compile(r'<package>([^<]*)</package>')
PACKAGE_OPEN = "<package>"
# held-back text is at most a 256-char package name wrapped in its tags
MAX_PENDING = len(PACKAGE_OPEN) + 256 + len("</package>")


class CodeStreamAssembler:
    """Accumulates arbitrarily chunked text and reports ``<package>`` tags as they complete.

    A tag split across chunks is held back until its closing tag arrives.
    """

    def __init__(self):
        self._parts: List[str] = []
        self._pending = ""
        self.packages: List[str] = []

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: str) -> List[Dict[str, Any]]:
        if not chunk:
            return []
        events: List[Dict[str, Any]] = [{"type": "content", "content": chunk}]
        self._parts.append(chunk)
        self._pending += chunk

        consumed = 0
        for match in PACKAGE_TAG.finditer(self._pending):
            consumed = match.end()
            name = match.group(1).strip()
            if name and name not in self.packages:
                self.packages.append(name)
                events.append({"type": "package", "name": name, "message": f"📦 Package detected: {name}"})

        rest = self._pending[consumed:]
        start = rest.rfind(PACKAGE_OPEN)
        if start == -1:
            start = rest.rfind("<")
        pending = rest[start:] if start != -1 else ""
        # an unclosed tag that outgrows any package name is not a package tag
        self._pending = pending if len(pending) <= MAX_PENDING else ""
        return events

    def finish(self) -> Dict[str, Any]:
        return {"type": "complete", "packages": list(self.packages), "generatedCode": self.text}


async def consume_code_stream(chunks: AsyncIterable[str]) -> AsyncIterator[Dict[str, Any]]:
    """Yield assembler events for each chunk, then one ``complete`` event.

    Closing the generator early simply stops reading ``chunks``.
    """
    assembler = CodeStreamAssembler()
    async for chunk in chunks:
        for event in assembler.feed(chunk):
            yield event
    yield assembler.finish()

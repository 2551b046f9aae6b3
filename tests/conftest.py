"""
Pytest configuration and fixtures for all tests.

Providers are replaced by in-process fakes; no test touches the network.
"""

import asyncio
import io
import json
import zipfile
from typing import Callable, Dict, List, Optional

import pytest

from batch_translator.config import TranslationConfig
from batch_translator.core.llm.base import LLMProvider, LLMResponse
from batch_translator.core.llm.exceptions import ContentSafetyError
from batch_translator.core.llm.gateway import ApiGateway


def translate_echo(prompt: str) -> str:
    """Default fake translation: mark every text so tests can recognise it."""
    payload = prompt.strip()
    if payload.startswith('['):
        items = json.loads(payload)
        return json.dumps([{"id": item["id"], "translated_text": f"T:{item['text']}"} for item in items])
    return f"T:{prompt}"


class FakeProvider(LLMProvider):
    """
    Provider answering through a plain function.

    ``handler(prompt)`` returns the answer text or raises; a ``delay`` (or a
    per-prompt ``delay_for`` function) makes calls overlap so concurrency
    can be observed.
    """

    def __init__(self, handler: Optional[Callable[[str], str]] = None, delay: float = 0.0,
                 delay_for: Optional[Callable[[str], float]] = None):
        super().__init__(model="fake-model", timeout=5)
        self.handler = handler or translate_echo
        self.delay = delay
        self.delay_for = delay_for
        self.prompts: List[str] = []
        self.system_instructions: List[Optional[str]] = []
        self.histories: List[Optional[list]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._started = None

    @property
    def started(self) -> asyncio.Event:
        """Set once the first call has begun; created inside the running loop."""
        if self._started is None:
            self._started = asyncio.Event()
        return self._started

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt, model=None, system_instruction=None,
                       generation_config=None, history=None) -> LLMResponse:
        self.prompts.append(prompt)
        self.system_instructions.append(system_instruction)
        self.histories.append(history)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            delay = self.delay_for(prompt) if self.delay_for else self.delay
            if delay:
                await asyncio.sleep(delay)
            return LLMResponse(content=self.handler(prompt))
        finally:
            self.in_flight -= 1

    async def stream(self, prompt, model=None, system_instruction=None,
                     generation_config=None, history=None):
        response = await self.generate(prompt, model, system_instruction, generation_config, history)
        text = response.content
        for start in range(0, len(text), 5):
            yield text[start:start + 5]


def blocking_handler(marker: str = "FORBIDDEN") -> Callable[[str], str]:
    """Handler that refuses every prompt containing ``marker``."""
    def handler(prompt: str) -> str:
        if marker in prompt:
            raise ContentSafetyError("Response blocked: SAFETY")
        return translate_echo(prompt)
    return handler


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def gateway(fake_provider):
    return ApiGateway(fake_provider, requests_per_minute=0)


@pytest.fixture
def make_config():
    """Config factory with test-friendly defaults (bare prompt, no pacing)."""
    def factory(**overrides) -> TranslationConfig:
        values = dict(
            prompt_template="{{slot}}",
            requests_per_minute=0,
            max_workers=1,
            chunk_size=1000,
            api_key="test-key",
        )
        values.update(overrides)
        return TranslationConfig(**values)
    return factory


SAMPLE_XHTML = """<?xml version="1.0" encoding="UTF-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" xml:lang="en">
<head><title>Chapter One</title></head>
<body>
  <h1 class="title">Chapter One</h1>
  <p>It was a <b>dark</b> and stormy night.</p>
  <div class="figure">
    <img src="../Images/storm.jpg" alt="Storm"/>
    <p>The rain fell in torrents.</p>
  </div>
  <hr/>
  <p><ruby>漢<rt>kan</rt></ruby>字 are characters.</p>
  <p>   </p>
  <div class="note">A short note &amp; more.</div>
</body>
</html>"""


@pytest.fixture
def sample_xhtml():
    return SAMPLE_XHTML


def chapter_xhtml(title: str, paragraphs: List[str]) -> str:
    body = "\n".join(f"  <p>{text}</p>" for text in paragraphs)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml">\n'
        f'<head><title>{title}</title></head>\n'
        f'<body>\n  <h2>{title}</h2>\n{body}\n  <img src="../Images/pic.png" alt=""/>\n</body>\n</html>'
    )


def build_epub(chapters: Dict[str, str], extra_files: Optional[Dict[str, bytes]] = None) -> bytes:
    """
    Build a minimal EPUB archive in memory.

    ``chapters`` maps file names (relative to ``OEBPS/Text/``) to XHTML, in
    spine order.
    """
    manifest = []
    spine = []
    for number, name in enumerate(chapters):
        manifest.append(f'<item id="ch{number}" href="Text/{name}" media-type="application/xhtml+xml"/>')
        spine.append(f'<itemref idref="ch{number}"/>')
    manifest.append('<item id="pic" href="Images/pic.png" media-type="image/png"/>')

    opf = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="uid">\n'
        '<metadata xmlns:dc="http://purl.org/dc/elements/1.1/"><dc:identifier id="uid">test</dc:identifier>'
        '<dc:title>Test Book</dc:title><dc:language>en</dc:language></metadata>\n'
        f'<manifest>{"".join(manifest)}</manifest>\n'
        f'<spine>{"".join(spine)}</spine>\n'
        '</package>'
    )
    container = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">'
        '<rootfiles><rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>'
        '</rootfiles></container>'
    )

    output = io.BytesIO()
    with zipfile.ZipFile(output, 'w', zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(zipfile.ZipInfo('mimetype'), 'application/epub+zip', compress_type=zipfile.ZIP_STORED)
        archive.writestr('META-INF/container.xml', container)
        archive.writestr('OEBPS/content.opf', opf)
        for name, content in chapters.items():
            archive.writestr(f'OEBPS/Text/{name}', content)
        archive.writestr('OEBPS/Images/pic.png', b'\x89PNG fake image bytes')
        for name, data in (extra_files or {}).items():
            archive.writestr(name, data)
    return output.getvalue()


@pytest.fixture
def sample_epub_bytes():
    return build_epub({
        'ch1.xhtml': chapter_xhtml("One", ["First paragraph.", "Second <i>paragraph</i>.", "Third one."]),
        'ch2.xhtml': chapter_xhtml("Two", ["Fourth paragraph.", "Fifth &amp; last."]),
    })

"""
Batch translation of EPUB text nodes.

Many small text nodes are sent as one JSON request (``[{id, text}]``) and
the model answers with ``[{id, translated_text}]``; translations are
re-attached by id. When the provider blocks a batch, or answers with
something that cannot be matched back to the nodes, the batch is split in
two over the node list and each half is retried, down to single nodes. A
single node that still cannot be translated keeps its original text.
"""

import json
import logging
import re
from typing import Awaitable, Callable, Dict, List, Optional

from batch_translator.config import TranslationConfig
from ..llm.exceptions import ContentSafetyError
from .exceptions import EpubTranslationError
from .node_codec import EpubNode

logger = logging.getLogger(__name__)

CODE_FENCE_PATTERN = re.compile(r'^\s*```[\w-]*\s*\n?(.*?)\n?\s*```\s*$', re.DOTALL)


class ResponseFormatError(EpubTranslationError):
    """The model answer is not a JSON array covering the requested ids."""
    pass


def build_batch_payload(nodes: List[EpubNode]) -> str:
    """JSON request body for a batch of text nodes."""
    return json.dumps(
        [{"id": node.id, "text": node.content} for node in nodes],
        ensure_ascii=False,
        indent=1,
    )


def parse_batch_response(answer: str, nodes: List[EpubNode]) -> Dict[str, str]:
    """
    Map node ids to translated text from a model answer.

    Code fences and text around the JSON array are ignored.

    Raises:
        ResponseFormatError: If the answer is not a JSON array of objects or
            misses one of the requested ids
    """
    text = answer.strip()
    fenced = CODE_FENCE_PATTERN.match(text)
    if fenced:
        text = fenced.group(1).strip()

    start, end = text.find('['), text.rfind(']')
    if start < 0 or end <= start:
        raise ResponseFormatError("Answer contains no JSON array")

    try:
        items = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise ResponseFormatError(f"Answer is not valid JSON: {e}") from e

    if not isinstance(items, list):
        raise ResponseFormatError("Answer is not a JSON array")

    translations = {}
    for item in items:
        if not isinstance(item, dict) or 'id' not in item:
            continue
        value = item.get('translated_text', item.get('text'))
        if isinstance(value, str):
            translations[str(item['id'])] = value.strip()

    missing = [node.id for node in nodes if node.id not in translations]
    if missing:
        raise ResponseFormatError(f"Answer is missing {len(missing)} id(s), first: {missing[0]}")

    return {node.id: translations[node.id] for node in nodes}


class EpubBatchTranslator:
    """
    Translates lists of text nodes through a request function.

    ``request`` sends one payload and returns the raw model answer; it
    raises the gateway exceptions unchanged.
    """

    def __init__(self, config: TranslationConfig, request: Callable[[str], Awaitable[str]],
                 log_callback: Optional[Callable[[str, str], None]] = None):
        self.config = config
        self.request = request
        self.log_callback = log_callback

    def _log(self, level: str, message: str):
        logger.log(logging.getLevelName(level.upper()), message)
        if self.log_callback:
            self.log_callback(level, message)

    async def translate_nodes(self, nodes: List[EpubNode]) -> Dict[str, str]:
        """
        Translate text nodes, splitting the batch on blocks and bad answers.

        Returns:
            Mapping of node id to translated text, one entry per node

        Raises:
            RateLimitError, TranslationCancelledError, ApiError: from the
                request function; content-safety errors are also raised
                when safety retry is disabled
        """
        if not nodes:
            return {}

        try:
            answer = await self.request(build_batch_payload(nodes))
            return parse_batch_response(answer, nodes)
        except ContentSafetyError as e:
            if not self.config.use_content_safety_retry:
                raise
            reason = f"content safety: {e.message}"
        except ResponseFormatError as e:
            reason = f"unusable answer: {e}"

        if len(nodes) == 1:
            node = nodes[0]
            self._log('warning', f"Keeping original text for node {node.id} ({reason})")
            return {node.id: node.content}

        middle = len(nodes) // 2
        self._log('info', f"Splitting batch of {len(nodes)} nodes into {middle} + {len(nodes) - middle} ({reason})")
        translations = await self.translate_nodes(nodes[:middle])
        translations.update(await self.translate_nodes(nodes[middle:]))
        return translations

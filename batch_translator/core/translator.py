"""
Translation orchestrator.

Drives a job from units to results:

1. split the input into units (plain text or EPUB node lists);
2. skip units already translated by a prior run with identical boundaries;
3. translate the rest through a sliding-window pool of at most
   ``max_workers`` concurrent gateway calls;
4. report every finished unit on the progress and result channels;
5. return the results ordered by unit index.

A rate-limit error stops the job (no new gateway call is made; units
already in flight finish). A user stop additionally asks in-flight calls
to abandon. Content-safety blocks are recovered by recursive splitting.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional

from batch_translator.config import EPUB_SYSTEM_INSTRUCTION, TranslationConfig
from .chunking import split_text_into_chunks, split_chunk_in_two, unit_source_text
from .epub.epub_package import EpubBook, build_epub_units
from .epub.node_codec import EpubNode
from .epub.translator import EpubBatchTranslator
from .glossary import build_prompt
from .llm.base import GenerationConfig
from .llm.exceptions import (
    ApiError,
    ContentSafetyError,
    RateLimitError,
    TranslationCancelledError,
)
from .llm.gateway import ApiGateway
from .models import (
    CANCELLED_MARKER,
    GlossaryEntry,
    JobProgress,
    JobState,
    TranslationResult,
    UnitState,
)
from .post_processor import clean_translated_text, restore_trailing_newlines

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[JobProgress], None]
ResultCallback = Callable[[TranslationResult], None]
LogCallback = Callable[[str, str], None]
FragmentCallback = Callable[[int, str], None]

PREVIEW_LENGTH = 30


@dataclass
class WorkUnit:
    """One unit of a job: plain text, or a list of EPUB nodes."""
    index: int
    source_text: str
    nodes: Optional[List[EpubNode]] = None

    @property
    def text_nodes(self) -> List[EpubNode]:
        return [node for node in self.nodes or [] if node.is_text]


def _preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    return text.strip()[:length]


class TranslationOrchestrator:
    """
    Schedules the units of a job against an ``ApiGateway``.

    The three output channels stay separate: ``progress_callback`` gets a
    ``JobProgress`` copy, ``result_callback`` gets each unit result, and
    ``log_callback`` gets ``(level, message)`` pairs. All are optional.
    """

    def __init__(self, gateway: ApiGateway, config: TranslationConfig,
                 glossary: Optional[Iterable[GlossaryEntry]] = None,
                 progress_callback: Optional[ProgressCallback] = None,
                 result_callback: Optional[ResultCallback] = None,
                 log_callback: Optional[LogCallback] = None,
                 fragment_callback: Optional[FragmentCallback] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.gateway = gateway
        self.config = config
        self.glossary: List[GlossaryEntry] = list(glossary or [])
        self.progress_callback = progress_callback
        self.result_callback = result_callback
        self.log_callback = log_callback
        self.fragment_callback = fragment_callback
        self._clock = clock

        self.job_state = JobState.IDLE
        self.progress = JobProgress()
        self.unit_states: Dict[int, UnitState] = {}
        self._units: Dict[int, WorkUnit] = {}
        self._stop_requested = False
        self._rate_limited = False
        self._cancel_event: Optional[asyncio.Event] = None
        self._start_time = 0.0

        self._epub_translator = EpubBatchTranslator(config, self._request_epub_batch, self._log)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """
        Stop the running job.

        No further unit is submitted and pending gateway calls are asked to
        abandon; completed results are kept.
        """
        if self.job_state != JobState.RUNNING:
            return
        self._stop_requested = True
        if self._cancel_event is not None:
            self._cancel_event.set()
        self._log('warning', "Stop requested; pending calls are being cancelled")

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def update_config(self, config: TranslationConfig) -> None:
        """Swap the config; units not yet submitted use the new values."""
        self.config = config
        self._epub_translator.config = config
        self.gateway.set_requests_per_minute(config.requests_per_minute)

    def set_glossary(self, glossary: Iterable[GlossaryEntry]) -> None:
        self.glossary = list(glossary)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def translate_text(self, full_text: str,
                             prior_results: Optional[Iterable[TranslationResult]] = None) -> List[TranslationResult]:
        """
        Translate plain text.

        Args:
            full_text: Whole source text
            prior_results: Results of an earlier run; matching units are skipped

        Returns:
            Results ordered by unit index (only units that were reached)
        """
        chunks = split_text_into_chunks(full_text, self.config.chunk_size)
        self._log('info', f"Split text into {len(chunks)} units (chunk size {self.config.chunk_size})")
        units = [WorkUnit(index, chunk) for index, chunk in enumerate(chunks)]
        return await self._run_job(units, prior_results)

    async def translate_epub(self, book: EpubBook,
                             prior_results: Optional[Iterable[TranslationResult]] = None) -> List[TranslationResult]:
        """
        Translate the text nodes of a book.

        Every successful result carries ``translated_segments``: one string
        per text node of the unit, in order.
        """
        node_units = build_epub_units(book, self.config)
        self._log('info', f"Grouped {len(book.all_nodes)} nodes of {len(book.chapters)} chapters into {len(node_units)} units")
        units = [
            WorkUnit(index, unit_source_text(nodes), nodes)
            for index, nodes in enumerate(node_units)
        ]
        return await self._run_job(units, prior_results)

    async def retry_chunks(self, results: List[TranslationResult],
                           all_results: Optional[List[TranslationResult]] = None,
                           book: Optional[EpubBook] = None) -> List[TranslationResult]:
        """
        Re-submit the given units through the worker pool.

        EPUB units are rebuilt from ``book`` when it is given; otherwise
        they must come from the last job this orchestrator ran.

        Returns:
            ``all_results`` (or ``results``) with the retried units replaced,
            ordered by unit index

        Raises:
            ValueError: If an EPUB unit cannot be found
        """
        known = self._units
        if book is not None:
            known = {
                index: WorkUnit(index, unit_source_text(nodes), nodes)
                for index, nodes in enumerate(build_epub_units(book, self.config))
            }
        pool = all_results if all_results is not None else results
        epub_job = book is not None or any(result.translated_segments is not None for result in pool)

        units = []
        for result in results:
            unit = known.get(result.chunk_index)
            if unit is None or unit.source_text != result.original_text:
                if epub_job:
                    raise ValueError(f"Unit {result.chunk_index + 1} is not a unit of the book; "
                                     f"pass the book the results were made from")
                unit = WorkUnit(result.chunk_index, result.original_text)
            units.append(unit)

        retried = await self._run_job(units, None, remember_units=False)
        merged = {result.chunk_index: result for result in pool}
        for result in retried:
            merged[result.chunk_index] = result
        return [merged[index] for index in sorted(merged)]

    async def retry_failed_chunks(self, results: List[TranslationResult],
                                  book: Optional[EpubBook] = None) -> List[TranslationResult]:
        """Retry every failed unit of a result list."""
        failed = [result for result in results if not result.success]
        if not failed:
            return sorted(results, key=lambda r: r.chunk_index)
        self._log('info', f"Retrying {len(failed)} failed unit(s)")
        return await self.retry_chunks(failed, results, book)

    async def retry_chunk(self, result: TranslationResult,
                          book: Optional[EpubBook] = None) -> TranslationResult:
        """Retry a single unit and return its new result."""
        retried = await self.retry_chunks([result], book=book)
        return retried[0]

    # ------------------------------------------------------------------
    # Job loop
    # ------------------------------------------------------------------

    def _reset(self, total: int) -> None:
        self.progress = JobProgress(total_chunks=total, current_status_message="Starting translation...")
        self.unit_states = {}
        self._stop_requested = False
        self._rate_limited = False
        self._cancel_event = asyncio.Event()
        self._start_time = self._clock()
        self.job_state = JobState.RUNNING

    @staticmethod
    def _can_skip(unit: WorkUnit, stored: Optional[TranslationResult]) -> bool:
        if stored is None or not stored.success:
            return False
        if len(stored.original_text) != len(unit.source_text):
            return False
        if unit.nodes is not None:
            segments = stored.translated_segments
            return segments is not None and len(segments) == len(unit.text_nodes)
        return True

    async def _run_job(self, units: List[WorkUnit],
                       prior_results: Optional[Iterable[TranslationResult]],
                       remember_units: bool = True) -> List[TranslationResult]:
        self._reset(len(units))
        if remember_units:
            self._units = {unit.index: unit for unit in units}
        for unit in units:
            self.unit_states[unit.index] = UnitState.PENDING
        self._emit_progress()

        prior = {result.chunk_index: result for result in prior_results or []}
        results: Dict[int, TranslationResult] = {}
        to_translate = []
        for unit in units:
            stored = prior.get(unit.index)
            if self._can_skip(unit, stored):
                results[unit.index] = stored
                self._record(stored)
            else:
                if stored is not None and stored.success:
                    self._log('debug', f"Unit {unit.index + 1}: boundaries changed, translating again")
                to_translate.append(unit)

        skipped = len(results)
        if skipped:
            self._log('info', f"Skipping {skipped} unit(s) already translated")

        try:
            await self._run_pool(to_translate, results)
        except BaseException:
            self.job_state = JobState.ERRORED
            raise

        self._finish()
        return [results[index] for index in sorted(results)]

    async def _run_pool(self, units: List[WorkUnit], results: Dict[int, TranslationResult]) -> None:
        """Sliding window: a finished slot is refilled immediately."""
        in_flight = set()
        total = self.progress.total_chunks
        try:
            for unit in units:
                while in_flight and len(in_flight) >= self.config.max_workers:
                    done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                    self._collect(done, results)
                if self._stop_requested:
                    break

                self.unit_states[unit.index] = UnitState.IN_FLIGHT
                self.progress.current_chunk_processing = unit.index
                self.progress.current_status_message = f"Translating unit {unit.index + 1}/{total}..."
                self._emit_progress()
                in_flight.add(asyncio.ensure_future(self._process_unit(unit)))

            if in_flight:
                done, in_flight = await asyncio.wait(in_flight)
                self._collect(done, results)
        except BaseException:
            for task in in_flight:
                task.cancel()
            raise

    @staticmethod
    def _collect(done, results: Dict[int, TranslationResult]) -> None:
        for task in done:
            result = task.result()
            results[result.chunk_index] = result

    async def _process_unit(self, unit: WorkUnit) -> TranslationResult:
        try:
            if unit.nodes is not None:
                result = await self._translate_epub_unit(unit)
            else:
                result = await self._translate_text_unit(unit)
        except RateLimitError as e:
            result = TranslationResult(unit.index, unit.source_text, "", False, error=str(e))
            self._stop_for_rate_limit(e)
        self._record(result)
        return result

    def _stop_for_rate_limit(self, error: RateLimitError) -> None:
        self._stop_requested = True
        self._rate_limited = True
        self.progress.last_error_message = str(error)
        self.progress.current_status_message = "Stopped: API rate limit reached"
        self._log('error', f"Rate limit reached, stopping the job: {error.message}")

    def _record(self, result: TranslationResult) -> None:
        """Update counters once per finished unit and fire both channels."""
        progress = self.progress
        progress.processed_chunks += 1
        if result.success:
            progress.successful_chunks += 1
            self.unit_states[result.chunk_index] = UnitState.SUCCEEDED
        else:
            progress.failed_chunks += 1
            self.unit_states[result.chunk_index] = UnitState.FAILED
            if result.error and not result.cancelled:
                progress.last_error_message = result.error

        elapsed = self._clock() - self._start_time
        remaining = progress.total_chunks - progress.processed_chunks
        progress.eta_seconds = math.ceil(elapsed / progress.processed_chunks * remaining)

        if not self._rate_limited:
            progress.current_status_message = (
                f"{progress.processed_chunks}/{progress.total_chunks} units processed"
            )
        self._emit_progress()
        if self.result_callback:
            self.result_callback(result)

    def _finish(self) -> None:
        progress = self.progress
        progress.current_chunk_processing = None
        if self._rate_limited:
            self.job_state = JobState.ERRORED
        elif self._stop_requested:
            self.job_state = JobState.STOPPED
            progress.current_status_message = "Stopped by user"
        else:
            self.job_state = JobState.COMPLETED
            progress.current_status_message = "Translation complete"
        self._log('info', f"Job {self.job_state.value}: {progress.successful_chunks} succeeded, "
                          f"{progress.failed_chunks} failed, {progress.processed_chunks}/{progress.total_chunks} processed")
        self._emit_progress()

    def _emit_progress(self) -> None:
        if self.progress_callback:
            self.progress_callback(replace(self.progress))

    def _log(self, level: str, message: str) -> None:
        logger.log(logging.getLevelName(level.upper()), message)
        if self.log_callback:
            self.log_callback(level, message)

    # ------------------------------------------------------------------
    # Gateway calls
    # ------------------------------------------------------------------

    def _generation_config(self) -> GenerationConfig:
        return GenerationConfig(
            temperature=self.config.temperature,
            top_p=self.config.top_p,
            top_k=self.config.top_k,
            max_output_tokens=self.config.max_output_tokens,
        )

    def _may_send(self) -> bool:
        return not self._stop_requested

    async def _call_gateway(self, prompt: str, system_instruction: Optional[str] = None,
                            index: Optional[int] = None) -> str:
        if self._stop_requested:
            raise TranslationCancelledError("Job is stopping; no new request is sent")

        config = self.config
        history = None
        if config.enable_prefill_translation:
            history = config.prefill_cached_history
            system_instruction = "\n\n".join(
                part for part in (config.prefill_system_instruction, system_instruction) if part
            )

        if self.fragment_callback is not None and index is not None:
            return await self.gateway.generate_stream(
                prompt, config.model_name, system_instruction or None, self._generation_config(),
                history, on_fragment=lambda fragment: self.fragment_callback(index, fragment),
                cancel_event=self._cancel_event, should_send=self._may_send,
            )
        return await self.gateway.generate(
            prompt, config.model_name, system_instruction or None, self._generation_config(),
            history, cancel_event=self._cancel_event, should_send=self._may_send,
        )

    async def _request_epub_batch(self, payload: str) -> str:
        prompt = build_prompt(payload, self.config, self.glossary)
        return await self._call_gateway(prompt, EPUB_SYSTEM_INSTRUCTION)

    # ------------------------------------------------------------------
    # Plain text units
    # ------------------------------------------------------------------

    def _cancelled_result(self, text: str, index: int) -> TranslationResult:
        return TranslationResult(index, text, "", False, error=CANCELLED_MARKER)

    async def _translate_text_unit(self, unit: WorkUnit) -> TranslationResult:
        result = await self.translate_chunk(unit.source_text, unit.index)
        if result.success:
            result.translated_text = restore_trailing_newlines(unit.source_text, result.translated_text)
        return result

    async def translate_chunk(self, text: str, index: int,
                              allow_safety_retry: bool = True) -> TranslationResult:
        """
        Translate one piece of text.

        Blank text succeeds with an empty translation without any call.
        A content-safety block goes to ``retry_with_smaller_chunks`` when
        allowed; other failures give a failed result.

        Raises:
            RateLimitError: always propagated, the caller stops the job
        """
        if not text.strip():
            return TranslationResult(index, text, "", True)

        try:
            prompt = build_prompt(text, self.config, self.glossary)
            answer = await self._call_gateway(prompt, index=index)
            return TranslationResult(index, text, clean_translated_text(answer, self.config), True)
        except TranslationCancelledError:
            return self._cancelled_result(text, index)
        except RateLimitError:
            raise
        except ContentSafetyError as e:
            if allow_safety_retry and self.config.use_content_safety_retry and not self._stop_requested:
                self._log('warning', f"Unit {index + 1} blocked by content filter, retrying in smaller pieces")
                return await self.retry_with_smaller_chunks(text, index)
            self._log('warning', f"Unit {index + 1} blocked by content filter: {e.message}")
            return TranslationResult(index, text, "", False, error=str(e))
        except ApiError as e:
            self._log('error', f"Unit {index + 1} failed: {e}")
            return TranslationResult(index, text, "", False, error=str(e))

    async def retry_with_smaller_chunks(self, text: str, index: int, attempt: int = 1) -> TranslationResult:
        """
        Recover a blocked unit by translating its halves separately.

        Halves that fail are recovered the same way with ``attempt + 1``.
        Pieces that cannot be translated contribute a visible placeholder,
        so the joined result always covers the whole unit.
        """
        config = self.config
        if attempt > config.max_content_safety_split_attempts:
            self._log('error', f"Unit {index + 1}: maximum split attempts ({config.max_content_safety_split_attempts}) exceeded")
            return TranslationResult(
                index, text, f"[translation failed: max split attempts exceeded: {_preview(text)}...]", False,
                error="Content safety: maximum split attempts exceeded",
            )

        if len(text.strip()) <= config.min_content_safety_chunk_size:
            self._log('warning', f"Unit {index + 1}: minimum piece size reached, cannot translate: {_preview(text, 50)}...")
            return TranslationResult(
                index, text, f"[translation failed: {_preview(text)}...]", False,
                error="Content safety: translation failed even at minimum piece size",
            )

        pieces = split_chunk_in_two(text, config.content_safety_split_by_sentences)
        self._log('info', f"Unit {index + 1}: split attempt #{attempt} into {len(pieces)} pieces")

        parts = []
        for piece in pieces:
            if self._stop_requested:
                return self._cancelled_result(text, index)

            result = await self.translate_chunk(piece, index, allow_safety_retry=False)
            if not result.success and not result.cancelled:
                result = await self.retry_with_smaller_chunks(piece, index, attempt + 1)
            if result.cancelled:
                return self._cancelled_result(text, index)
            parts.append(result.translated_text)

        return TranslationResult(index, text, "\n".join(parts), True)

    # ------------------------------------------------------------------
    # EPUB units
    # ------------------------------------------------------------------

    async def _translate_epub_unit(self, unit: WorkUnit) -> TranslationResult:
        text_nodes = unit.text_nodes
        if not text_nodes:
            return TranslationResult(unit.index, unit.source_text, "", True, translated_segments=[])

        try:
            translations = await self._epub_translator.translate_nodes(text_nodes)
        except TranslationCancelledError:
            return self._cancelled_result(unit.source_text, unit.index)
        except RateLimitError:
            raise
        except ApiError as e:
            self._log('error', f"Unit {unit.index + 1} failed: {e}")
            return TranslationResult(unit.index, unit.source_text, "", False, error=str(e))

        segments = [translations[node.id] for node in text_nodes]
        return TranslationResult(
            unit.index, unit.source_text, "\n\n".join(segments), True, translated_segments=segments,
        )

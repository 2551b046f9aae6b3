"""
Command-line interface for text and EPUB translation
"""
import argparse
import asyncio
import signal
import sys
from dataclasses import replace
from pathlib import Path

from tqdm import tqdm

from batch_translator.config import (
    CHUNK_SIZE,
    DEFAULT_MODEL,
    GEMINI_API_KEY,
    MAX_WORKERS,
    REQUESTS_PER_MINUTE,
    TranslationConfig,
)
from batch_translator.core.epub.epub_package import load_epub_bytes
from batch_translator.core.epub.exceptions import EpubStructureError, XmlParsingError
from batch_translator.core.llm import ApiGateway
from batch_translator.core.llm.providers import GeminiProvider
from batch_translator.core.models import JobState
from batch_translator.core.quality import detect_quality_issues
from batch_translator.core.translator import TranslationOrchestrator
from batch_translator.persistence import SnapshotValidationError, export_snapshot, import_snapshot
from batch_translator.utils.file_utils import (
    default_output_path,
    get_unique_output_path,
    load_glossary_file,
    read_bytes_file,
    read_snapshot_file,
    read_text_file,
    save_epub_output,
    save_text_output,
    write_snapshot_file,
)
from batch_translator.utils.unified_logger import LogType, setup_cli_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Translate a text or EPUB file with an LLM, chunk by chunk.")
    parser.add_argument("-i", "--input", help="Path to the input file (.txt or .epub).")
    parser.add_argument("-o", "--output", default=None, help="Path to the output file. Defaults to <input>_translated.<ext>.")
    parser.add_argument("-m", "--model", default=DEFAULT_MODEL, help=f"Gemini model (default: {DEFAULT_MODEL}).")
    parser.add_argument("--api-key", dest="api_key", default=GEMINI_API_KEY, help="Gemini API key (default: GEMINI_API_KEY).")
    parser.add_argument("-cs", "--chunk-size", dest="chunk_size", type=int, default=CHUNK_SIZE,
                        help=f"Maximum characters per text unit (default: {CHUNK_SIZE}).")
    parser.add_argument("--rpm", type=int, default=REQUESTS_PER_MINUTE,
                        help=f"Requests per minute, 0 for no pacing (default: {REQUESTS_PER_MINUTE}).")
    parser.add_argument("-w", "--workers", type=int, default=MAX_WORKERS,
                        help=f"Concurrent requests (default: {MAX_WORKERS}).")
    parser.add_argument("--glossary", default=None, help="JSON glossary file; enables glossary injection.")
    parser.add_argument("--prompt-file", dest="prompt_file", default=None,
                        help="Prompt template file containing {{slot}} and optionally {{glossary_context}}.")
    parser.add_argument("--prefill", action="store_true", help="Send requests as a chat with the prefill system instruction.")
    parser.add_argument("--no-post-processing", dest="no_post_processing", action="store_true",
                        help="Keep model answers exactly as returned.")
    parser.add_argument("--resume", default=None, help="Resume from a snapshot JSON file.")
    parser.add_argument("--snapshot-out", dest="snapshot_out", default=None,
                        help="Write a snapshot here when the job ends (always written when it is stopped).")
    parser.add_argument("--retry-failed", dest="retry_failed", action="store_true",
                        help="Retry failed units once after the first pass.")
    parser.add_argument("--list-models", dest="list_models", action="store_true", help="List available Gemini models and exit.")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output.")
    return parser


class ProgressBar:
    """tqdm bar driven by the orchestrator's progress channel"""

    def __init__(self, disable: bool = False):
        self.bar = tqdm(total=0, unit="unit", dynamic_ncols=True, disable=disable)

    def __call__(self, progress):
        if self.bar.total != progress.total_chunks:
            self.bar.total = progress.total_chunks
        self.bar.n = progress.processed_chunks
        postfix = f"ok={progress.successful_chunks} failed={progress.failed_chunks}"
        if progress.eta_seconds is not None:
            postfix += f" eta={progress.eta_seconds}s"
        self.bar.set_postfix_str(postfix, refresh=False)
        self.bar.set_description(progress.current_status_message[:40])
        self.bar.refresh()

    def close(self):
        self.bar.close()


def install_stop_handler(orchestrator: TranslationOrchestrator, logger) -> bool:
    """Route Ctrl+C to a cooperative stop; returns False where signals are unsupported"""
    loop = asyncio.get_running_loop()

    def on_interrupt():
        logger.warning("Interrupt received, stopping after in-flight requests are cancelled...")
        orchestrator.request_stop()

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except (NotImplementedError, RuntimeError):
        return False
    return True


async def run(args, logger) -> int:
    config = TranslationConfig.from_cli_args(args)
    if args.prompt_file:
        config = replace(config, prompt_template=await read_text_file(args.prompt_file))

    if args.list_models:
        gateway = ApiGateway(GeminiProvider(api_key=config.api_key, model=config.model_name, timeout=config.timeout))
        try:
            for name in await gateway.list_models():
                print(name)
        finally:
            await gateway.close()
        return 0

    prior_results = None
    source_text = None
    book = None
    input_name = args.input

    if args.resume:
        try:
            restored = import_snapshot(await read_snapshot_file(args.resume), config)
        except SnapshotValidationError as e:
            logger.error(f"Cannot resume from {args.resume}: {e}", LogType.ERROR_DETAIL)
            return 1
        # Scheduling and credentials come from this invocation
        config = replace(restored.config, api_key=config.api_key, requests_per_minute=config.requests_per_minute,
                         max_workers=config.max_workers, timeout=config.timeout)
        prior_results = restored.results
        source_text, book = restored.source_text, restored.book
        input_name = input_name or restored.source_name or args.resume
        logger.info(f"Resuming: {len(restored.results)}/{restored.progress.total_chunks} units restored from snapshot")
    else:
        if not args.input:
            logger.error("--input is required unless --resume is given")
            return 2
        if not Path(args.input).exists():
            logger.error(f"Input file '{args.input}' not found.", LogType.ERROR_DETAIL)
            return 1
        if args.input.lower().endswith('.epub'):
            book = load_epub_bytes(await read_bytes_file(args.input), Path(args.input).name,
                                   log_callback=logger.create_log_callback())
        else:
            source_text = await read_text_file(args.input)

    if not config.api_key:
        logger.error("A Gemini API key is required (--api-key or GEMINI_API_KEY)")
        return 2

    is_epub = book is not None
    expected_suffix = '.epub' if is_epub else '.txt'
    output_base = Path(str(input_name))
    if output_base.suffix.lower() != expected_suffix:
        output_base = output_base.with_suffix(expected_suffix)
    output_path = get_unique_output_path(args.output or default_output_path(output_base))

    glossary = await load_glossary_file(args.glossary) if args.glossary else []

    provider = GeminiProvider(api_key=config.api_key, model=config.model_name, timeout=config.timeout)
    gateway = ApiGateway(provider, config.requests_per_minute)
    progress_bar = ProgressBar()
    orchestrator = TranslationOrchestrator(
        gateway, config, glossary,
        progress_callback=progress_bar,
        log_callback=logger.create_log_callback(),
    )
    handler_installed = install_stop_handler(orchestrator, logger)

    logger.info("Translation Started", LogType.TRANSLATION_START, {
        'input': input_name,
        'mode': 'epub' if is_epub else 'text',
        'model': config.model_name,
        'restored': len(prior_results) if prior_results else 0,
    })

    try:
        try:
            if is_epub:
                results = await orchestrator.translate_epub(book, prior_results)
            else:
                results = await orchestrator.translate_text(source_text, prior_results)

            if args.retry_failed and orchestrator.job_state == JobState.COMPLETED \
                    and any(not r.success for r in results):
                results = await orchestrator.retry_failed_chunks(results, book)
        except KeyboardInterrupt:
            # Only reached where signal handlers cannot be installed
            orchestrator.request_stop()
            raise
    finally:
        progress_bar.close()
        if handler_installed:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        await gateway.close()

    for issue in detect_quality_issues(results):
        logger.warning(f"Unit {issue.chunk_index + 1}: possible {issue.issue_type.value} "
                       f"(length ratio {issue.ratio}, z-score {issue.z_score})", LogType.QUALITY)

    if is_epub:
        await save_epub_output(output_path, book, config, results)
    else:
        await save_text_output(output_path, source_text, config, results)

    end_data = {
        'state': orchestrator.job_state.value,
        'output_file': output_path,
        'stats': {
            'completed': sum(1 for r in results if r.success),
            'failed': sum(1 for r in results if not r.success),
        },
    }

    snapshot_path = args.snapshot_out
    if snapshot_path is None and orchestrator.job_state != JobState.COMPLETED:
        snapshot_path = get_unique_output_path(f"{output_path}.snapshot.json")
    if snapshot_path:
        snapshot = export_snapshot(config, results, source_text=source_text, book=book,
                                   source_name=Path(str(input_name)).name)
        await write_snapshot_file(snapshot_path, snapshot)
        end_data['snapshot_file'] = snapshot_path

    logger.info("Translation Finished", LogType.TRANSLATION_END, end_data)
    if orchestrator.progress.last_error_message and orchestrator.job_state == JobState.ERRORED:
        logger.error(f"Job ended early: {orchestrator.progress.last_error_message}")

    return 0 if orchestrator.job_state == JobState.COMPLETED else 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logger = setup_cli_logger(enable_colors=not args.no_color)
    try:
        return asyncio.run(run(args, logger))
    except (EpubStructureError, XmlParsingError, OSError, ValueError) as e:
        logger.error(f"Translation failed: {e}", LogType.ERROR_DETAIL, {'details': type(e).__name__})
        return 1


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Local speech-to-text from the microphone.

Usage:
    localscribe --model-id parakeet-tdt-0.6b-v3 --model-dir ~/models/parakeet-tdt

Recording starts immediately. Press Enter to stop and print the transcript,
or Ctrl+C to cancel. In streaming mode partial transcripts are printed to
stderr as each chunk completes.

Options:
    --model-id ID        Catalog id; selects Whisper, CTC or TDT (env LOCALSCRIBE_MODEL_ID)
    --model-dir PATH     Model directory or a file inside it (env LOCALSCRIBE_MODEL_DIR)
    --language CODE      Language hint, or "auto" (default)
    --single-shot        Transcribe only after recording stops
    --log-file PATH      Also write debug logs to a rotating file
    --verbose, -v        Enable debug logging on the console
    --list-devices       List audio input devices and exit
"""

import argparse
import logging
import os
import sys

from .app.pipeline import StreamingOrchestrator
from .core.asr import EngineManager
from .core.errors import LocalScribeError
from .core.runtime_config import ConfigStore, RuntimeConfig
from .core.types import StreamingUpdate
from .interfaces.microphone import AudioCapture
from .logging_setup import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="localscribe",
        description="Local speech-to-text from the microphone",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--model-id",
        default=os.environ.get("LOCALSCRIBE_MODEL_ID"),
        help="Model catalog id, e.g. parakeet-tdt-0.6b-v3 or whisper-small",
    )
    parser.add_argument(
        "--model-dir",
        default=os.environ.get("LOCALSCRIBE_MODEL_DIR"),
        help="Model directory (or any file inside it)",
    )
    parser.add_argument(
        "--language",
        default="auto",
        help='Language hint such as "en", or "auto" to detect',
    )
    parser.add_argument(
        "--single-shot",
        action="store_true",
        help="Transcribe once after recording stops instead of streaming",
    )
    parser.add_argument(
        "--log-file",
        help="Write debug logs to this file (rotated at 5 MB)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose debug logging",
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List available audio input devices and exit",
    )
    return parser.parse_args(argv)


def list_audio_devices() -> None:
    """Print available audio input devices."""
    print("\nAvailable Audio Input Devices:")
    print("-" * 50)
    devices = AudioCapture.list_input_devices()
    if not devices:
        print("No audio input devices found.")
        return
    for index, name in devices:
        print(f"  [{index}] {name}")
    print()


def print_partial(update: StreamingUpdate) -> None:
    print(f"[{update.chunks_completed}] {update.text}", file=sys.stderr, flush=True)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the localscribe CLI."""
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, log_file=args.log_file)

    if args.list_devices:
        list_audio_devices()
        return 0

    if not args.model_id or not args.model_dir:
        print("error: --model-id and --model-dir are required", file=sys.stderr)
        return 2

    store = ConfigStore(RuntimeConfig(language=args.language, streaming=not args.single_shot))
    engines = EngineManager(idle_timeout_s=store.get().engine_idle_timeout_s)
    try:
        engines.activate(
            args.model_id,
            args.model_dir,
            max_symbols_per_step=store.get().max_symbols_per_step,
        )
    except LocalScribeError as exc:
        logger.error("Could not load model: %s", exc)
        return 1

    orchestrator = StreamingOrchestrator(engines, store, on_partial=print_partial)
    try:
        orchestrator.start()
    except LocalScribeError as exc:
        logger.error("Could not start recording: %s", exc)
        engines.deactivate()
        return 1

    try:
        input("Recording... press Enter to stop, Ctrl+C to cancel\n")
    except (KeyboardInterrupt, EOFError):
        orchestrator.cancel()
        engines.deactivate()
        return 130

    try:
        result = orchestrator.stop()
    except LocalScribeError as exc:
        logger.error("Transcription failed: %s", exc)
        return 1
    finally:
        engines.deactivate()

    if result is not None:
        print(result.text)
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Command-line interface for bird call identification."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .catalog import JsonSpeciesCatalog, SpeciesCatalog
from .catalog.config import DEFAULT_CATALOG_PATH
from .identification.channel import (
    ProgressMessage,
    SubscriberMessage,
    UploadProgressMessage,
)
from .identification.config import DEFAULT_JOB_TIMEOUT, DEFAULT_REMOTE_TIMEOUT
from .identification.exceptions import IdentificationError, InputValidationError
from .identification.inference import create_inference_engine
from .identification.interfaces import InferenceEngine
from .identification.logging_utils import configure_logging
from .identification.models import MatchStatus, PredictData
from .identification.orchestrator import PipelineOrchestrator
from .identification.remote import RemoteIdentificationClient

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_REJECTED = 2


class IdentifyCLI:
    """Command-line front end that identifies one recording and prints the result."""

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        warm_up: bool = True,
        show_progress: bool = True,
    ) -> None:
        """
        Initialize the CLI.

        Args:
            orchestrator: Pipeline orchestrator to submit the recording to
            warm_up: Whether to warm the pipeline before submitting
            show_progress: Whether to print stage changes while the job runs
        """
        self._orchestrator = orchestrator
        self._warm_up = warm_up
        self._show_progress = show_progress
        self._last_stage: str | None = None
        self._last_upload_percent = -1

    def _on_message(self, message: SubscriberMessage) -> None:
        """Print progress as it arrives."""
        if not self._show_progress:
            return

        if isinstance(message, ProgressMessage):
            stage = message.progress.stage.value
            # One line per stage keeps the output readable
            if stage != self._last_stage:
                self._last_stage = stage
                print(f"⏳ [{message.progress.percent:5.1f}%] {message.progress.message}")
        elif isinstance(message, UploadProgressMessage):
            # Print at each quarter of the transfer
            milestone = int(message.percent) // 25 * 25
            if milestone > self._last_upload_percent:
                self._last_upload_percent = milestone
                print(f"📤 Uploaded {milestone}%")

    @staticmethod
    def format_result(data: PredictData) -> str:
        """Format a completed result for display."""
        if data.status is MatchStatus.MATCHED and data.bird_data is not None:
            icon = "🐦"
        elif data.status is MatchStatus.NOT_IN_CATALOG:
            icon = "📕"
        else:
            icon = "🤷"
        return f"{icon} {data.headline()}"

    async def run(self, path: str | Path) -> int:
        """
        Identify one recording.

        Args:
            path: Recording on disk

        Returns:
            Process exit code
        """
        unsubscribe = self._orchestrator.subscribe(self._on_message)
        try:
            if self._warm_up:
                print("🔥 Warming up identification pipeline...")
                task = self._orchestrator.warm_up()
                if task is not None:
                    await task

            print(f"🎧 Identifying {Path(path).name}...")
            data = await self._orchestrator.identify(path)
            print(self.format_result(data))
            return EXIT_OK

        except InputValidationError as e:
            print(f"🚫 Rejected: {e}")
            return EXIT_REJECTED
        except IdentificationError as e:
            print(f"❌ Identification failed ({e.kind.value}): {e}")
            return EXIT_FAILED
        finally:
            unsubscribe()


def build_orchestrator(
    engine: InferenceEngine | None,
    catalog: SpeciesCatalog,
    remote_url: str | None = None,
    timeout: float | None = DEFAULT_JOB_TIMEOUT,
) -> PipelineOrchestrator:
    """
    Assemble an orchestrator for local or remote identification.

    Args:
        engine: Classifier backend; unused when remote_url is set
        catalog: Species catalog
        remote_url: Base URL of a server-side identification endpoint
        timeout: Per-job timeout in seconds

    Returns:
        Configured PipelineOrchestrator
    """
    remote_client = None
    if remote_url:
        remote_client = RemoteIdentificationClient(remote_url, timeout=DEFAULT_REMOTE_TIMEOUT)
    return PipelineOrchestrator(
        engine=engine,
        catalog=catalog,
        remote_client=remote_client,
        job_timeout=timeout,
    )


async def main(
    audio_file: str,
    model_path: str | None = None,
    labels_path: str | None = None,
    backend: str = "onnx",
    catalog_path: str | None = None,
    remote_url: str | None = None,
    timeout: float | None = DEFAULT_JOB_TIMEOUT,
    warm_up: bool = True,
) -> int:
    """Main entry point for the CLI application."""
    engine = None
    if model_path:
        try:
            engine = create_inference_engine(backend, model_path, labels_path)
        except IdentificationError as e:
            print(f"❌ Cannot load model: {e}")
            return EXIT_FAILED
    catalog = JsonSpeciesCatalog(catalog_path or DEFAULT_CATALOG_PATH)

    async with build_orchestrator(engine, catalog, remote_url, timeout) as orchestrator:
        cli = IdentifyCLI(orchestrator, warm_up=warm_up)
        return await cli.run(audio_file)


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Bird call identification - identify a bird species from a recording",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  birdcall-id call.wav --model model.onnx --labels labels.txt
  birdcall-id call.mp3 --model model.joblib --backend joblib
  birdcall-id call.ogg --remote https://birds.example.org/api/
  birdcall-id call.wav --model model.onnx --labels labels.txt --catalog species.json -v

Exit codes:
  0    Identification completed (match, no confident match, or not in catalog)
  1    Identification failed
  2    Recording rejected (unsupported format or too large)
        """,
    )

    parser.add_argument("audio_file", metavar="FILE", help="Recording to identify")

    parser.add_argument(
        "--model",
        type=str,
        default=None,
        metavar="PATH",
        help="Classifier model artifact (required unless --remote is given)",
    )

    parser.add_argument(
        "--labels",
        type=str,
        default=None,
        metavar="PATH",
        help="Label file, one class per line in model output order",
    )

    parser.add_argument(
        "--backend",
        choices=["onnx", "joblib"],
        default="onnx",
        help="Model backend (default: onnx)",
    )

    parser.add_argument(
        "--catalog",
        type=str,
        default=None,
        metavar="PATH",
        help=f"Species catalog JSON file (default: {DEFAULT_CATALOG_PATH})",
    )

    parser.add_argument(
        "--remote",
        type=str,
        default=None,
        metavar="URL",
        help="Identify on a server-side endpoint instead of locally",
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_JOB_TIMEOUT,
        metavar="SECONDS",
        help=f"Give up on a job after this many seconds (default: {DEFAULT_JOB_TIMEOUT:g})",
    )

    parser.add_argument(
        "--no-warm-up",
        action="store_true",
        help="Skip pipeline warm-up before identifying",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging and debug information",
    )

    parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable trace logging (most verbose, includes all progress messages)",
    )

    return parser


def handle_arguments(args: argparse.Namespace) -> bool:
    """
    Handle parsed command-line arguments.

    Args:
        args: Parsed arguments from argparse

    Returns:
        True if execution should continue, False if the arguments are unusable
    """
    configure_logging(verbose=args.verbose, trace=args.trace)

    if not args.model and not args.remote:
        print("❌ Either --model or --remote is required.")
        return False
    if args.timeout is not None and args.timeout <= 0:
        print("❌ --timeout must be positive.")
        return False
    return True


def cli_entry_with_args() -> None:
    """CLI entry point with argument parsing."""
    parser = create_argument_parser()

    try:
        args = parser.parse_args()

        if not handle_arguments(args):
            sys.exit(EXIT_FAILED)

        exit_code = asyncio.run(
            main(
                audio_file=args.audio_file,
                model_path=args.model,
                labels_path=args.labels,
                backend=args.backend,
                catalog_path=args.catalog,
                remote_url=args.remote,
                timeout=args.timeout,
                warm_up=not args.no_warm_up,
            )
        )
        sys.exit(exit_code)

    except KeyboardInterrupt:
        print("\n👋 Cancelled.")
        sys.exit(EXIT_FAILED)
    except SystemExit:
        # Re-raise SystemExit (from argparse help, etc.)
        raise
    except Exception as e:
        logging.error(f"Unexpected error: {e}")
        sys.exit(EXIT_FAILED)


if __name__ == "__main__":
    cli_entry_with_args()

"""CLI entry point for the rbxlx script decompiler."""

import argparse
import logging
import sys
import time
from collections import Counter

from dotenv import load_dotenv

load_dotenv()

from rbxlx_decompiler.config import DEFAULT_OUTPUT, ENV_KEY, resolve_settings
from rbxlx_decompiler.errors import DecompilerError
from rbxlx_decompiler.pipeline.scanner import RunTotals, Scanner
from rbxlx_decompiler.pipeline.transformer import OracleClient, transform_payload
from rbxlx_decompiler.pipeline.writer import write_document
from rbxlx_decompiler.state import Candidate, Outcome, Substitution

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def run_pipeline(input_path: str, client: OracleClient) -> dict:
    """Scan the document, decompile each script, return final state."""
    substitutions: list[Substitution] = []
    outcomes: Counter = Counter()

    def on_candidate(candidate: Candidate, totals: RunTotals) -> None:
        prefix = f"[{totals.processed}/{totals.total}] Decompiling {candidate['name']}..."
        result = transform_payload(candidate["source"], client)
        outcomes[result["outcome"]] += 1

        if result["outcome"] in (Outcome.DECOMPILED, Outcome.NO_BYTECODE):
            logger.info("%s %s", prefix, result["message"])
        else:
            logger.warning("%s %s", prefix, result["message"])

        if result["text"] is not None and candidate["source_start"] is not None:
            substitutions.append(Substitution(
                start=candidate["source_start"],
                end=candidate["source_end"],
                text=result["text"],
                cdata=candidate["source_cdata"],
            ))

    start = time.time()
    scanner = Scanner(on_candidate)
    totals = scanner.scan(input_path)
    elapsed = time.time() - start

    return {
        "total": totals.total,
        "processed": totals.processed,
        "outcomes": dict(outcomes),
        "substitutions": substitutions,
        "encoding": scanner.encoding,
        "elapsed": elapsed,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rbxlx-decompiler",
        description="Decompile every script inside an rbxlx file through the oracle.",
    )
    parser.add_argument("input_file", help="Input .rbxlx / .rbxmx file")
    parser.add_argument("--output", "-o", default=DEFAULT_OUTPUT,
                        help=f"Output file path (default: {DEFAULT_OUTPUT})")
    parser.add_argument("--key", "-k",
                        help=f"Oracle key; falls back to the {ENV_KEY} env variable")
    parser.add_argument("--base-url", help="Oracle decompiler url")
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    parser.add_argument("--dry-run", action="store_true",
                        help="Decompile and report, but don't write the output file")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    try:
        settings = resolve_settings(args)
    except DecompilerError as exc:
        logger.error("%s", exc)
        return 1

    logger.info("Decompiling scripts in %s", settings.input_path)

    try:
        with OracleClient(settings.base_url, settings.key, settings.timeout) as client:
            state = run_pipeline(str(settings.input_path), client)
    except OSError as exc:
        logger.error("Can't read the file: %s", exc)
        return 1

    logger.info("Processed %d/%d scripts in %ds!", state["processed"], state["total"], int(state["elapsed"]))
    for outcome, count in sorted(state["outcomes"].items(), key=lambda kv: kv[0].value):
        logger.debug("  %s: %d", outcome.value, count)

    if settings.dry_run:
        logger.info("Dry run, not writing %s", settings.output_path)
        return 0

    logger.info("Writing output to %s...", settings.output_path)
    try:
        settings.output_path.parent.mkdir(parents=True, exist_ok=True)
        written = write_document(
            settings.input_path, settings.output_path, state["substitutions"], state["encoding"],
        )
    except (OSError, EOFError) as exc:
        logger.error("Failed to write %s: %s", settings.output_path, exc)
        return 1

    logger.info("Done! %d scripts rewritten", written)
    return 0


if __name__ == "__main__":
    sys.exit(main())

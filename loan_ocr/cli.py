"""Command-line interface for loan disclosure extraction.

``extract`` runs one document and emits its field set as JSON; ``batch``
runs every document in a folder and writes one CSV row per document.
Both wait for the pipeline to finish, so large documents are processed
inline rather than handed to a background job.
"""

import argparse
import asyncio
import csv
import json
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loan_ocr.errors import ExtractionError
from loan_ocr.pipeline.controller import ExtractionController, build_controller
from loan_ocr.utils.config import load_config
from loan_ocr.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

MEDIA_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}

# Leading CSV columns; field columns follow in key order.
ROW_COLUMNS = (
    "filename",
    "status",
    "page_count",
    "seconds",
    "confidence_global",
    "pending",
    "warnings",
    "error",
)


@dataclass
class BatchSummary:
    """Counts for one batch run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    needs_review: int = 0


def collect_documents(folder: Path) -> list[Path]:
    """Documents in ``folder`` with a supported extension, by name."""
    return sorted(
        p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in MEDIA_TYPES
    )


def _extract(controller: ExtractionController, path: Path) -> dict[str, Any]:
    media_type = MEDIA_TYPES.get(path.suffix.lower())
    outcome = asyncio.run(controller.run_to_completion(path.read_bytes(), media_type))
    return outcome.to_payload()


def _success_row(path: Path, payload: dict[str, Any], seconds: float) -> dict[str, Any]:
    return {
        "filename": path.name,
        "status": "ok",
        "page_count": payload["page_count"],
        "seconds": round(seconds, 2),
        "confidence_global": payload["confidence_global"],
        "pending": "; ".join(payload["pending"]),
        "warnings": "; ".join(payload["warnings"]),
        **payload["fields"],
    }


def write_rows(rows: list[dict[str, Any]], destination: Path) -> None:
    """Write result rows as CSV, leading columns first.

    Nothing is written when there are no rows.
    """
    if not rows:
        return
    present = {key for row in rows for key in row}
    header = [c for c in ROW_COLUMNS if c in present]
    header += sorted(present.difference(ROW_COLUMNS))

    destination.parent.mkdir(parents=True, exist_ok=True)
    with open(destination, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=header, restval="")
        writer.writeheader()
        writer.writerows(rows)


def process_folder(
    folder: Path,
    destination: Path,
    controller: ExtractionController,
    verbose: bool = False,
) -> BatchSummary:
    """Extract every document in ``folder`` into one CSV file.

    A document that fails is recorded with its error and does not stop
    the batch.

    Args:
        folder: Directory holding PDF, JPEG or PNG documents.
        destination: CSV file to write.
        controller: Controller running the pipeline.
        verbose: Print one line per document as it is processed.

    Returns:
        Per-batch counts.
    """
    documents = collect_documents(folder)
    summary = BatchSummary(total=len(documents))
    if not documents:
        logger.warning("Nothing to process in %s", folder)
        return summary

    rows: list[dict[str, Any]] = []
    for n, path in enumerate(documents, 1):
        if verbose:
            print(f"[{n}/{summary.total}] {path.name}")
        started = time.perf_counter()
        try:
            payload = _extract(controller, path)
        except ExtractionError as exc:
            logger.error("%s failed: %s", path.name, exc.code)
            rows.append({"filename": path.name, "status": "error", "error": exc.user_message})
            summary.failed += 1
            continue
        rows.append(_success_row(path, payload, time.perf_counter() - started))
        summary.succeeded += 1
        if payload["pending"]:
            summary.needs_review += 1

    write_rows(rows, destination)
    logger.info("Wrote %d rows to %s", len(rows), destination)
    return summary


def extract_file(path: Path, controller: ExtractionController) -> dict[str, Any]:
    """Field set of one document, tagged with its file name."""
    return {"filename": path.name, **_extract(controller, path)}


def _cmd_batch(args: argparse.Namespace, controller: ExtractionController) -> int:
    if not args.folder.is_dir():
        print(f"Error: {args.folder} is not a directory", file=sys.stderr)
        return 1
    summary = process_folder(args.folder, args.output, controller, args.verbose)
    print(
        f"{summary.total} documents: {summary.succeeded} extracted, "
        f"{summary.failed} failed, {summary.needs_review} need review"
    )
    if summary.total:
        print(f"CSV: {args.output}")
    return 0


def _cmd_extract(args: argparse.Namespace, controller: ExtractionController) -> int:
    if not args.file.is_file():
        print(f"Error: {args.file} not found", file=sys.stderr)
        return 1
    try:
        result = extract_file(args.file, controller)
    except ExtractionError as exc:
        print(f"Error: {exc.user_message}", file=sys.stderr)
        return 1

    text = json.dumps(result, indent=2, ensure_ascii=False)
    if args.output is None:
        print(text)
    else:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text, encoding="utf-8")
        print(f"Fields written to {args.output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loan-ocr", description="Extract financial fields from loan disclosure documents"
    )
    parser.add_argument("-c", "--config", type=Path, help="Configuration YAML file")
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    extract = commands.add_parser("extract", help="Extract one document to JSON")
    extract.add_argument("file", type=Path, help="PDF, JPEG or PNG document")
    extract.add_argument("-o", "--output", type=Path, help="Write JSON here instead of stdout")
    extract.set_defaults(handler=_cmd_extract)

    batch = commands.add_parser("batch", help="Extract a folder of documents to CSV")
    batch.add_argument("folder", type=Path, help="Folder with documents")
    batch.add_argument(
        "-o", "--output", type=Path, default=Path("results.csv"), help="CSV file (results.csv)"
    )
    batch.add_argument("-v", "--verbose", action="store_true", help="List documents as they run")
    batch.set_defaults(handler=_cmd_batch)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Run the command named on the command line and exit with its status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(0)

    config = load_config(args.config)
    setup_logging(config.log_level)
    sys.exit(args.handler(args, build_controller(config)))


if __name__ == "__main__":
    main()

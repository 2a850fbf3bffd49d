"""Command line interface: ``servicegen expand|check|inspect``."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from servicegen.config import ServicegenConfig, load_config
from servicegen.exceptions import InvalidLogLevelError, ServicegenError
from servicegen.models import LogLevel
from servicegen.observability.logging import configure_logging, get_logger
from servicegen.transform import EntryPointTransformer, TransformResult

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1


def _log_level_arg(value: str) -> LogLevel:
    try:
        return LogLevel.parse(value)
    except InvalidLogLevelError as exc:
        raise argparse.ArgumentTypeError(exc.message) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="servicegen",
        description="Generate service bootstrap loaders from annotated entry points.",
    )
    parser.add_argument("--config", dest="config_file", default=None, help="Path to a servicegen.toml file.")
    parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        default=None,
        help="Render servicegen's own logs for a console or as JSON lines.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug events to stderr.")

    sub = parser.add_subparsers(dest="command", required=True)

    level_help = "Log level baked into the generated loader (TRACE, DEBUG, INFO, WARN, ERROR)."

    expand_p = sub.add_parser("expand", help="Write the transformed module(s).")
    expand_p.add_argument("files", nargs="+", type=Path, help="Modules containing an entry point.")
    target = expand_p.add_mutually_exclusive_group()
    target.add_argument("-o", "--output", type=Path, default=None, help="Output file (single input only).")
    target.add_argument("--output-dir", type=Path, default=None, help="Directory for generated modules.")
    target.add_argument("--in-place", action="store_true", help="Overwrite the input files.")
    expand_p.add_argument("--log-level", type=_log_level_arg, default=None, help=level_help)

    check_p = sub.add_parser("check", help="Report diagnostics without writing anything.")
    check_p.add_argument("files", nargs="+", type=Path, help="Modules containing an entry point.")
    check_p.add_argument("--log-level", type=_log_level_arg, default=None, help=level_help)

    inspect_p = sub.add_parser("inspect", help="Print the parsed loader model as JSON.")
    inspect_p.add_argument("file", type=Path, help="Module containing an entry point.")
    inspect_p.add_argument("--log-level", type=_log_level_arg, default=None, help=level_help)

    return parser


def _report(results: Sequence[TransformResult]) -> bool:
    """Print diagnostics to stderr; return True when every result is clean."""

    ok = True
    for result in results:
        if len(result.diagnostics):
            print(result.diagnostics.render(), file=sys.stderr)
        if not result.ok:
            ok = False
    return ok


def _write_outputs(args: argparse.Namespace, results: Sequence[TransformResult]) -> None:
    for path, result in zip(args.files, results):
        if result.code is None:
            continue
        if args.in_place:
            destination: Optional[Path] = path
        elif args.output is not None:
            destination = args.output
        elif args.output_dir is not None:
            destination = args.output_dir / path.name
        else:
            destination = None

        if destination is None:
            sys.stdout.write(result.code)
            continue

        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(result.code, encoding="utf-8")
        logger.info("module_written", source=str(path), destination=str(destination))


def _run_expand(args: argparse.Namespace, transformer: EntryPointTransformer) -> int:
    if args.output is not None and len(args.files) != 1:
        print("servicegen: error: --output requires exactly one input file", file=sys.stderr)
        return EXIT_FAILED
    if args.output is None and args.output_dir is None and not args.in_place and len(args.files) != 1:
        print("servicegen: error: use --output-dir or --in-place with several input files", file=sys.stderr)
        return EXIT_FAILED

    results = transformer.transform_many(args.files, log_level=args.log_level)
    ok = _report(results)
    _write_outputs(args, results)
    return EXIT_OK if ok else EXIT_FAILED


def _run_check(args: argparse.Namespace, transformer: EntryPointTransformer) -> int:
    results = transformer.transform_many(args.files, log_level=args.log_level)
    ok = _report(results)
    for result in results:
        status = "ok" if result.ok else "failed"
        print(f"{result.filename}: {status}")
    return EXIT_OK if ok else EXIT_FAILED


def _run_inspect(args: argparse.Namespace, transformer: EntryPointTransformer) -> int:
    result = transformer.transform_file(args.file, log_level=args.log_level)
    _report([result])
    if result.loader is None:
        return EXIT_FAILED
    print(json.dumps(result.loader.to_dict(), indent=2))
    return EXIT_OK if result.ok else EXIT_FAILED


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config: ServicegenConfig = load_config(
            args.config_file,
            logging={"format": args.log_format, "level": "DEBUG" if args.verbose else None},
        )
    except ServicegenError as exc:
        print(f"servicegen: error: {exc.message}", file=sys.stderr)
        return EXIT_FAILED

    configure_logging(level=config.logging.level, format=config.logging.format)
    transformer = EntryPointTransformer(config)

    handlers = {
        "expand": _run_expand,
        "check": _run_check,
        "inspect": _run_inspect,
    }

    try:
        return handlers[args.command](args, transformer)
    except ServicegenError as exc:
        print(f"servicegen: error: {exc.message}", file=sys.stderr)
        return EXIT_FAILED
    except OSError as exc:
        print(f"servicegen: error: {exc}", file=sys.stderr)
        return EXIT_FAILED


__all__ = ["build_parser", "main"]

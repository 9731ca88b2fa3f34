"""Command line entry point: run `go test -json` and export the result as a trace."""

import argparse
import sys
from contextlib import ExitStack
from pathlib import Path
from typing import List, Optional, TextIO, Tuple

from loguru import logger

from gotest_trace.config import Settings, get_settings
from gotest_trace.domains.tracing.exceptions import TraceError
from gotest_trace.domains.tracing.services import TraceResult, TraceService
from gotest_trace.domains.tracing.summary import generate_comment
from gotest_trace.infrastructure.export.provider import create_tracer_provider, flush
from gotest_trace.infrastructure.process.runner import GoTestProcess


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gotest-trace",
        description="Run go tests and export them as an OpenTelemetry trace.",
    )
    parser.add_argument("path", nargs="?", help="package pattern passed to `go test` (e.g. ./...)")
    parser.add_argument("--wd", default=".", help="working directory for `go test`")
    parser.add_argument(
        "--input",
        metavar="FILE",
        help="read `go test -json` output from FILE ('-' for stdin) instead of running go test",
    )
    parser.add_argument("--endpoint", help="OTLP/HTTP traces endpoint")
    parser.add_argument("--service-name", help="service.name of the exported trace")
    parser.add_argument("--comment", metavar="FILE", help="write a plain-text pass/fail summary to FILE")
    parser.add_argument(
        "--sort-children",
        action="store_true",
        default=None,
        help="report sibling spans in name order",
    )
    parser.add_argument("--quiet", action="store_true", help="do not echo test output")
    parser.add_argument("--log-level", help="minimum level of diagnostic logs (DEBUG, INFO, WARNING...)")
    return parser


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """CLI flags take precedence over environment and .env values."""
    update = {}
    if args.endpoint is not None:
        update["otlp_endpoint"] = args.endpoint
    if args.service_name is not None:
        update["service_name"] = args.service_name
    if args.sort_children is not None:
        update["sort_children"] = args.sort_children
    if args.quiet:
        update["echo_output"] = False
    if args.log_level is not None:
        update["log_level"] = args.log_level.upper()
    return settings.model_copy(update=update)


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


def _run(service: TraceService, args: argparse.Namespace, settings: Settings) -> Tuple[TraceResult, int]:
    if args.input is not None:
        with ExitStack() as stack:
            stream: TextIO = sys.stdin
            if args.input != "-":
                try:
                    stream = stack.enter_context(open(args.input, encoding="utf-8"))
                except OSError as e:
                    raise TraceError(f"Cannot read {args.input}: {e}") from e
            return service.run(stream), 0

    with GoTestProcess.for_package(settings, args.path, cwd=args.wd) as process:
        result = service.run(process.lines())
        return result, process.wait()


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.input is None and not args.path:
        parser.error("a package path is required unless --input is given")

    settings = _apply_overrides(get_settings(), args)
    _configure_logging(settings.log_level)

    provider = create_tracer_provider(settings)
    tracer = provider.get_tracer(settings.tracer_name)
    service = TraceService(tracer, settings, echo=sys.stdout if settings.echo_output else None)

    try:
        result, exit_code = _run(service, args, settings)
        print(result.trace_id)

        if args.comment:
            Path(args.comment).write_text(generate_comment(result.groups) + "\n", encoding="utf-8")
            logger.info(f"Wrote test summary to {args.comment}")

        flush(provider, settings.flush_timeout_millis)
    except TraceError as e:
        logger.error(str(e))
        return 1
    finally:
        provider.shutdown()

    return exit_code

#!/usr/bin/env python3
"""memsize/main.py — CLI entry-point.

Usage examples
--------------
    # Size of everything reachable from a module's namespace
    memsize json

    # Size of one object, addressed by attribute path
    memsize myapp.cache:registry.entries --top 15

    # Machine readable / browsable output
    memsize myapp.cache:registry --format json -o sizes.json
    memsize myapp.cache:registry --format html -o sizes.html

Exit codes
----------
    0   Success.
    2   Infrastructure failure (target not importable, invalid root,
        bad configuration ...).
    130 Interrupted.

The module doubles as ``python -m memsize`` via ``memsize/__main__.py``.
"""

from __future__ import annotations

import argparse
import importlib
import logging
import sys
import textwrap
from typing import Any, Optional, Sequence

from memsize import __version__
from memsize.errors import ConfigError, MemsizeError
from memsize.report import Report
from memsize.scan import ScanConfig, scan

_log = logging.getLogger("memsize")

EXIT_OK: int = 0
EXIT_INFRA: int = 2
EXIT_INTERRUPTED: int = 130

_HANDLER_NAME = "memsize-cli"


def _configure_logging(verbosity: int) -> None:
    """Set up the ``memsize`` logger.

    0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("memsize")
    for old in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(old)
    root.setLevel(level)
    root.addHandler(handler)


def resolve_target(spec: str) -> Any:
    """Import ``module`` or ``module:attr.path`` and return the object."""
    module_name, _, attr_path = spec.partition(":")
    if not module_name:
        raise ConfigError(f"no module in target {spec!r}", hint="use module[:attr.path]")
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"cannot import {module_name!r}: {exc}", cause=exc) from exc
    if not attr_path:
        # a module is opaque; its namespace is what holds the storage
        return vars(obj)
    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as exc:
            raise ConfigError(
                f"{spec!r}: {type(obj).__qualname__} has no attribute {part!r}",
                cause=exc,
            ) from exc
    return obj


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memsize",
        description=(
            "memsize — per-type memory usage of a live Python object graph.\n\n"
            "Imports TARGET, walks everything reachable from it with the\n"
            "interpreter paused, and prints the bytes used per type."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              memsize json
              memsize myapp.cache:registry --top 10
              memsize myapp.cache:registry --format html -o sizes.html

            environment:
              MEMSIZE_SWITCH_INTERVAL, MEMSIZE_DISABLE_GC,
              MEMSIZE_FOLLOW_VIEW_BASE, MEMSIZE_MAX_DEPTH,
              MEMSIZE_HTML_TEMPLATE
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )
    parser.add_argument(
        "target",
        metavar="TARGET",
        help="Object to scan: module or module:attr.path",
    )
    parser.add_argument(
        "--top",
        type=int,
        default=None,
        metavar="N",
        help="Only list the N largest types.",
    )
    parser.add_argument(
        "-f", "--format",
        choices=["text", "json", "html"],
        default="text",
        help="Output format (default: %(default)s).",
    )
    parser.add_argument(
        "-o", "--output",
        default=None,
        metavar="FILE",
        help='Output file ("-" or omit for stdout; required for html).',
    )
    parser.add_argument(
        "--no-colour", "--no-color",
        dest="colour",
        action="store_false",
        default=None,
        help="Disable coloured text output.",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=None,
        metavar="N",
        help="Abort if the graph nests deeper than N.",
    )
    return parser


def _run(args: argparse.Namespace) -> int:
    config = ScanConfig.from_env()
    if args.max_depth is not None:
        config = ScanConfig(
            switch_interval=config.switch_interval,
            disable_gc=config.disable_gc,
            follow_view_base=config.follow_view_base,
            max_depth=args.max_depth,
        )
    root = resolve_target(args.target)
    _log.info("Scanning %s (%s)", args.target, type(root).__qualname__)
    report = Report(scan(root, config=config))

    to_stdout = args.output is None or args.output == "-"
    if args.format == "html":
        if to_stdout:
            sys.stdout.write(report.render_html(args.top))
        else:
            report.write_html(args.output, top=args.top)
        return EXIT_OK

    if args.format == "json":
        text = report.to_json(args.top) + "\n"
    else:
        colour = False if not to_stdout else args.colour
        text = report.render(colour=colour, top=args.top)
    if to_stdout:
        sys.stdout.write(text)
    else:
        with open(args.output, "w", encoding="utf-8") as fh:
            fh.write(text)
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the memsize CLI and return its exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        return _run(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return EXIT_INTERRUPTED
    except MemsizeError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA
    except OSError as exc:
        _log.error("Cannot write output: %s", exc)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())

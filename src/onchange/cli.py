"""CLI entry point for onchange: watch paths and run a command when they change."""

import argparse
import asyncio
import logging
import sys
from collections.abc import Iterable
from pathlib import Path

from onchange import __version__
from onchange.controller import OnchangeController
from onchange_core.config import ConfigError, ConfigSources, EngineConfig, RuleTable
from onchange_core.models import ExecutionMode, WatchTarget
from onchange_core.notifier import ConsoleNotifier
from onchange_core.template import PathTemplate, TemplateError
from onchange_core.watchers import WatchError

DEFAULT_TEMPLATE = "Change Detected: {path}"
DEFAULT_DURATION_MS = 500


def _milliseconds(value: str) -> int:
    try:
        ms = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected milliseconds as an integer, got {value!r}")
    if ms < 0:
        raise argparse.ArgumentTypeError("must not be negative")
    return ms


def split_command(argv: list[str], value_options: Iterable[str] = ()) -> tuple[list[str], list[str]]:
    """Split argv at the first free '--' into (options and watch paths, command words).

    A '--' given as the value of an option in `value_options` does not split;
    it is passed on as `OPTION=--` so argparse reads it as that value.
    """
    value_options = set(value_options)
    options: list[str] = []
    i = 0
    while i < len(argv):
        word = argv[i]
        if word == "--":
            return options, argv[i + 1 :]
        if word in value_options and i + 1 < len(argv):
            value = argv[i + 1]
            options.extend([f"{word}={value}"] if value == "--" else [word, value])
            i += 2
            continue
        options.append(word)
        i += 1
    return options, []


def _value_options(parser: argparse.ArgumentParser) -> set[str]:
    return {
        option
        for action in parser._actions
        if action.option_strings and action.nargs != 0
        for option in action.option_strings
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="onchange",
        usage="%(prog)s [OPTIONS] WATCH... [-- COMMAND...]",
        description="Watch files and directories and run a command when they change.",
        epilog="Template variables: {path} {rpath} {dir} {rdir} {name} {ext} {name.ext} {pwd} {rname}\n"
        "Use {{ and }} for literal braces.\n\n"
        "Examples:\n"
        "  onchange -r src -- make                 # run make on any change below src\n"
        "  onchange notes.md -- pandoc {rpath} -o {name}.pdf\n"
        "  onchange -r . -t '{rpath}'              # only report changes (config rules apply)\n"
        "\n"
        "Without a command, rules are read from /etc/onchange.toml,\n"
        "~/.config/onchange.toml and ./.onchange.toml (later files win per extension).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("watch", nargs="+", metavar="WATCH", help="Paths to watch")
    parser.add_argument(
        "-d",
        "--duration",
        type=_milliseconds,
        default=DEFAULT_DURATION_MS,
        help="Scan interval in milliseconds, also the default debounce window (default: %(default)s)",
    )
    parser.add_argument(
        "-D",
        "--debounce",
        type=_milliseconds,
        default=None,
        help="Debounce window in milliseconds (default: same as --duration)",
    )
    parser.add_argument("-r", "--recursive", action="store_true", help="Watch directories recursively")
    parser.add_argument(
        "-a",
        "--async",
        dest="concurrent",
        action="store_true",
        help="Run commands concurrently instead of one at a time",
    )
    parser.add_argument(
        "-t",
        "--template",
        default=DEFAULT_TEMPLATE,
        help="Template of the line shown for each change (default: %(default)r, '' for none)",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Config file to use instead of the standard search path",
    )
    parser.add_argument(
        "-i",
        "--ignore",
        action="append",
        default=[],
        metavar="GLOB",
        help="Ignore paths matching this shell glob (repeatable)",
    )
    parser.add_argument(
        "--delay",
        type=_milliseconds,
        default=0,
        help="Milliseconds to wait before running each command (default: %(default)s)",
    )
    parser.add_argument(
        "-R",
        "--render-only",
        action="store_true",
        help="Show the rendered command but do not run it",
    )
    parser.add_argument(
        "-T",
        "--trial-run",
        action="store_true",
        help="Treat every WATCH path as changed once, then exit",
    )
    parser.add_argument("--poll", action="store_true", help="Use the polling backend")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace, with the words after '--' in `command`
    """
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    options, command = split_command(list(argv), _value_options(parser))

    args = parser.parse_args(options)
    args.command = command

    if args.trial_run and args.recursive:
        parser.error("argument -T/--trial-run: not allowed with argument -r/--recursive")

    return args


def build_config(args: argparse.Namespace, cwd: str | Path | None = None) -> EngineConfig:
    """
    Turn parsed arguments into an EngineConfig.

    Raises:
        ConfigError: If a config file is unreadable or invalid
        TemplateError: If the message or command template is invalid
    """
    if args.config:
        sources = ConfigSources.explicit(args.config)
    else:
        sources = ConfigSources.default(cwd=cwd)
    rule_table = RuleTable.from_sources(sources)

    try:
        message_template = PathTemplate(args.template)
    except TemplateError as e:
        raise TemplateError(f"--template: {e}") from e

    explicit_command = None
    if args.command:
        try:
            explicit_command = PathTemplate(" ".join(args.command))
        except TemplateError as e:
            raise TemplateError(f"command: {e}") from e

    duration = args.duration / 1000.0
    debounce = args.debounce / 1000.0 if args.debounce is not None else duration

    return EngineConfig(
        watch_targets=tuple(WatchTarget(path=Path(p), recursive=args.recursive) for p in args.watch),
        message_template=message_template,
        rule_table=rule_table,
        explicit_command=explicit_command,
        execution_mode=ExecutionMode.CONCURRENT if args.concurrent else ExecutionMode.SERIAL,
        debounce_window=debounce,
        poll_interval=duration,
        ignore_patterns=tuple(args.ignore),
        delay=args.delay / 1000.0,
        render_only=args.render_only,
        force_polling=args.poll,
    )


def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the onchange CLI.

    Exits 0 on normal shutdown (including Ctrl+C) and 1 on startup errors.
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
    logging.getLogger("watchdog").setLevel(logging.WARNING)

    try:
        config = build_config(args)
        controller = OnchangeController(config, notifier=ConsoleNotifier())
        if args.trial_run:
            asyncio.run(controller.trial_run())
        else:
            asyncio.run(controller.run_forever())
    except KeyboardInterrupt:
        sys.exit(0)
    except (ConfigError, TemplateError, WatchError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

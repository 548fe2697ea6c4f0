# Copyright Red Hat
#
# snapdelta/command.py - Snapshot delta command interface
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""The ``snapdelta.command`` module provides both the snapdelta command line
interface infrastructure, and a simple procedural interface to the
``snapdelta`` library modules.

The procedural interface is used by the ``snapdelta`` command line tool,
and may be used by application programs, or interactively in the
Python shell by users who do not require all the features present
in the snapdelta object API.
"""
from argparse import ArgumentParser, ArgumentTypeError
from typing import Callable, List, Optional
from os.path import basename
from json import dumps
import logging
import sys

from snapdelta import (
    SNAPDELTA_DEBUG_FINGERPRINT,
    SNAPDELTA_DEBUG_DIFF,
    SNAPDELTA_DEBUG_STORE,
    SNAPDELTA_DEBUG_COMMAND,
    SNAPDELTA_DEBUG_ALL,
    SNAPDELTA_SUBSYSTEM_COMMAND,
    SnapdeltaParseError,
    SubsystemFilter,
    set_debug_mask,
    ProgressAwareHandler,
    parse_size_with_units,
    __version__,
)
from snapdelta.config import DEFAULT_CONFIG_FILE, SnapdeltaConfig
from .fsdiff import (
    DiffOptions,
    FileRecord,
    FsDiffResults,
    SnapshotDiffer,
    SnapshotStore,
    compare_files,
)
from .fsdiff.options import COMPRESSION_TYPES

DIFF_FORMATS = FsDiffResults.DIFF_FORMATS

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_command(msg, *args, **kwargs):
    """A wrapper for command subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": SNAPDELTA_SUBSYSTEM_COMMAND}, **kwargs)


_DEFAULT_LOG_LEVEL = logging.WARNING
_CONSOLE_HANDLER = None


def run_snapshot(
    scan_root: str,
    store_dir: str,
    options: Optional[DiffOptions] = None,
    report: Optional[Callable[[FsDiffResults], None]] = None,
    save: bool = True,
) -> FsDiffResults:
    """
    Snapshot ``scan_root``, compare it with the snapshot stored in
    ``store_dir`` and store the new snapshot.

    :param scan_root: The directory tree to snapshot.
    :param store_dir: The snapshot store directory.
    :param options: Options for snapshot generation and comparison.
    :param report: Optional callable receiving the results before the new
                   snapshot is saved.
    :param save: Save the new snapshot.
    :returns: The diff results.
    :rtype: ``FsDiffResults``
    """
    differ = SnapshotDiffer(scan_root, store_dir, options)
    return differ.run(report=report, save=save)


def show_snapshot(store_dir: str, options: Optional[DiffOptions] = None) -> List[FileRecord]:
    """
    Return the records of the snapshot stored in ``store_dir``.

    :param store_dir: The snapshot store directory.
    :param options: Options naming the snapshot file and compression.
    :returns: The stored records in path order.
    :rtype: ``List[FileRecord]``
    """
    options = options or DiffOptions()
    store = SnapshotStore(
        store_dir, name=options.snapshot_name, compression=options.compression
    )
    return store.load().records()


def compare_snapshots(
    old_path: str, new_path: str, options: Optional[DiffOptions] = None
) -> FsDiffResults:
    """
    Compare two stored snapshot files.

    :param old_path: Path to the older snapshot file.
    :param new_path: Path to the newer snapshot file.
    :param options: Options for the comparison.
    :returns: The diff results.
    :rtype: ``FsDiffResults``
    """
    return compare_files(old_path, new_path, options)


def print_results(results: FsDiffResults, output_format: str = "summary"):
    """
    Print ``results`` to stdout in ``output_format``.

    :param results: The diff results to print.
    :param output_format: One of ``DIFF_FORMATS``.
    """
    output = results.format(output_format)
    if output:
        print(output)


def _options_from_args(cmd_args) -> DiffOptions:
    """
    Build ``DiffOptions`` from the configuration file named in ``cmd_args``
    overridden by any explicit command line options.
    """
    config = SnapdeltaConfig.from_file(cmd_args.config)
    options = DiffOptions.from_cmd_args(cmd_args, base=DiffOptions.from_config(config))
    _log_debug_command("Effective options:\n%s", options)
    return options


def _run_cmd(cmd_args):
    """
    Run command handler.

    Snapshot a tree, report changes since the previous run and store the
    new snapshot.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    options = _options_from_args(cmd_args)
    output_format = cmd_args.output_format or "summary"

    def _report(results: FsDiffResults):
        print_results(results, output_format)

    run_snapshot(
        cmd_args.scan_root,
        cmd_args.store_dir,
        options,
        report=_report,
        save=cmd_args.save,
    )
    return 0


def _show_cmd(cmd_args):
    """
    Show command handler.

    Print the records of the stored snapshot.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    options = _options_from_args(cmd_args)
    records = show_snapshot(cmd_args.store_dir, options)
    if cmd_args.json:
        print(dumps([record.to_dict() for record in records], indent=4))
    else:
        for record in records:
            print(record)
    return 0


def _compare_cmd(cmd_args):
    """
    Compare command handler.

    Compare two stored snapshot files without scanning.

    :param cmd_args: Command line arguments for the command
    :returns: integer status code returned from ``main()``
    """
    options = _options_from_args(cmd_args)
    if cmd_args.old_snapshot == cmd_args.new_snapshot:
        _log_error("Cannot compare '%s' to itself.", cmd_args.old_snapshot)
        return 1
    results = compare_snapshots(cmd_args.old_snapshot, cmd_args.new_snapshot, options)
    print_results(results, cmd_args.output_format or "summary")
    return 0


def setup_logging(cmd_args):
    """
    Set up snapdelta logging.
    """
    # pylint: disable=global-statement
    global _CONSOLE_HANDLER
    level = _DEFAULT_LOG_LEVEL
    if cmd_args.verbose and cmd_args.verbose > 1:
        level = logging.DEBUG
    elif cmd_args.verbose and cmd_args.verbose > 0:
        level = logging.INFO

    snapdelta_log = logging.getLogger("snapdelta")
    formatter = logging.Formatter("%(levelname)s - %(message)s")
    snapdelta_log.setLevel(level)
    if snapdelta_log.hasHandlers():
        snapdelta_log.handlers.clear()

    # Subsystem log filtering
    _snapdelta_subsystem_filter = SubsystemFilter("snapdelta")

    # Main console handler
    _CONSOLE_HANDLER = ProgressAwareHandler()

    _CONSOLE_HANDLER.setLevel(level)
    _CONSOLE_HANDLER.setFormatter(formatter)
    _CONSOLE_HANDLER.addFilter(_snapdelta_subsystem_filter)

    snapdelta_log.addHandler(_CONSOLE_HANDLER)


def shutdown_logging():
    """
    Shut down snapdelta logging.
    """
    logging.shutdown()


def set_debug(debug_arg):
    """
    Set debugging mask from command line argument.
    """
    if not debug_arg:
        return

    mask_map = {
        "fingerprint": SNAPDELTA_DEBUG_FINGERPRINT,
        "diff": SNAPDELTA_DEBUG_DIFF,
        "store": SNAPDELTA_DEBUG_STORE,
        "command": SNAPDELTA_DEBUG_COMMAND,
        "all": SNAPDELTA_DEBUG_ALL,
    }

    mask = 0
    for name in debug_arg.split(","):
        if name not in mask_map:
            raise ValueError(f"Unknown debug option: {name}")
        mask |= mask_map[name]
    set_debug_mask(mask)


def _size_arg(value: str) -> int:
    try:
        return parse_size_with_units(value)
    except SnapdeltaParseError as err:
        raise ArgumentTypeError(str(err)) from err


def _add_format_arg(parser):
    parser.add_argument(
        "-o",
        "--output-format",
        "--format",
        dest="output_format",
        metavar="FORMAT",
        choices=DIFF_FORMATS,
        default=None,
        help=f"Report output format ({', '.join(DIFF_FORMATS)})",
    )


def _add_run_args(parser):
    parser.add_argument(
        "-t",
        "--threshold",
        dest="hash_threshold",
        metavar="SIZE",
        type=_size_arg,
        default=None,
        help="Largest file size to content hash (e.g. 10MiB)",
    )
    parser.add_argument(
        "-w",
        "--workers",
        type=int,
        default=None,
        help="Number of concurrent fingerprint workers",
    )
    parser.add_argument(
        "-x",
        "--exclude",
        dest="exclude_patterns",
        metavar="GLOB",
        action="append",
        default=None,
        help="Exclude paths matching GLOB (may be repeated)",
    )
    parser.add_argument(
        "--compression",
        choices=COMPRESSION_TYPES,
        default=None,
        help="Compression to use when saving the snapshot",
    )
    parser.add_argument(
        "-n",
        "--no-save",
        dest="save",
        action="store_false",
        help="Report changes without replacing the stored snapshot",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Do not display progress output",
    )


RUN_CMD = "run"
SHOW_CMD = "show"
COMPARE_CMD = "compare"


def _add_subparsers(parser):
    """
    Add subparsers for snapdelta commands.

    :param parser: The top-level argument parser
    """
    command_subparser = parser.add_subparsers(dest="command", help="Command")

    # run subcommand
    run_parser = command_subparser.add_parser(
        RUN_CMD, help="Snapshot a tree and report changes since the last run"
    )
    run_parser.set_defaults(func=_run_cmd)
    run_parser.add_argument(
        "scan_root",
        metavar="SCAN_ROOT",
        type=str,
        action="store",
        help="The directory tree to snapshot",
    )
    run_parser.add_argument(
        "store_dir",
        metavar="STORE_DIR",
        type=str,
        action="store",
        help="The directory holding the stored snapshot",
    )
    _add_format_arg(run_parser)
    _add_run_args(run_parser)

    # show subcommand
    show_parser = command_subparser.add_parser(
        SHOW_CMD, help="Show the stored snapshot"
    )
    show_parser.set_defaults(func=_show_cmd)
    show_parser.add_argument(
        "store_dir",
        metavar="STORE_DIR",
        type=str,
        action="store",
        help="The directory holding the stored snapshot",
    )
    show_parser.add_argument(
        "--json",
        action="store_true",
        help="Display output in JSON notation",
    )

    # compare subcommand
    compare_parser = command_subparser.add_parser(
        COMPARE_CMD, help="Compare two stored snapshot files"
    )
    compare_parser.set_defaults(func=_compare_cmd)
    compare_parser.add_argument(
        "old_snapshot",
        metavar="OLD",
        type=str,
        action="store",
        help="The older snapshot file",
    )
    compare_parser.add_argument(
        "new_snapshot",
        metavar="NEW",
        type=str,
        action="store",
        help="The newer snapshot file",
    )
    _add_format_arg(compare_parser)


def main(args):
    """
    Main entry point for snapdelta.
    """
    parser = ArgumentParser(description="Snapshot Delta", prog=basename(args[0]))

    # Global arguments
    parser.add_argument(
        "-d",
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="A list of debug options to enable",
    )
    parser.add_argument("-v", "--verbose", help="Enable verbose output", action="count")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        help="Report the version number of snapdelta",
        version=__version__,
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="CONFIG",
        type=str,
        default=DEFAULT_CONFIG_FILE,
        help="Path to the snapdelta configuration file",
    )

    _add_subparsers(parser)

    cmd_args = parser.parse_args(args[1:])

    status = 1

    try:
        set_debug(cmd_args.debug)
    except ValueError as err:
        print(err)
        parser.print_help()
        return status

    setup_logging(cmd_args)

    _log_debug_command("Parsed %s", " ".join(args[1:]))

    if "func" not in cmd_args:
        parser.print_help()
        return status

    if cmd_args.debug:
        status = cmd_args.func(cmd_args)
    else:
        try:
            status = cmd_args.func(cmd_args)
        # pylint: disable=broad-except
        except KeyboardInterrupt:  # pragma: no cover
            _log_info("Exiting on user cancel")
        except Exception as err:
            _log_error("Command failed: %s", err)

    shutdown_logging()
    return status


def run():
    """
    Console script entry point.
    """
    sys.exit(main(sys.argv))


# vim: set et ts=4 sw=4 :

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .catalog import Workspace
from .config import ConfigStore, declare_standard_options
from .errors import ConfigError
from .logging_utils import configure_logging
from .orchestrator import PIPELINE_MODES, Mode, Orchestrator, RunOptions
from .report import MailSettings, RunReport, send_mail

logger = logging.getLogger(__name__)

USAGE = "stackbuild [options] {%s} [package or package set ...]" % ",".join(Mode.names())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackbuild",
        usage=USAGE,
        description="Checks out, configures and builds stacks of packages grouped in package sets",
    )
    parser.add_argument("mode", help="one of: " + ", ".join(Mode.names()))
    parser.add_argument("selection", nargs="*", help="restrict the run to these packages or package sets")
    parser.add_argument("--root", default=".", help="Root directory of the installation.")
    parser.add_argument("--reconfigure", action="store_true", help="re-ask all configuration options")
    parser.add_argument("--no-update", dest="update", action="store_false", help="do not update already checked-out sources")
    parser.add_argument("--no-osdeps", dest="osdeps", action="store_false", help="do not install OS dependencies")
    parser.add_argument("--verbose", action="store_true", help="display more detailed information")
    parser.add_argument("--debug", action="store_true", help="show full traces on errors")
    parser.add_argument("--nice", type=int, default=None, help="nice the subprocesses to the given value")
    parser.add_argument("--mail-from", default=None, help="sender of the mail report")
    parser.add_argument("--mail-to", action="append", default=[], help="send the report to this address (repeatable)")
    parser.add_argument("--mail-subject", default="stackbuild report", help="subject of the mail report")
    parser.add_argument("--mail-smtp", default="localhost", help="SMTP server used to send the report")
    parser.add_argument("--mail-only-errors", action="store_true", help="only send a mail when the run failed")
    return parser


def options_from_args(args: argparse.Namespace) -> Optional[RunOptions]:
    try:
        mode = Mode(args.mode)
    except ValueError:
        return None
    return RunOptions(
        mode=mode,
        selection=list(args.selection),
        reconfigure=args.reconfigure,
        update=args.update,
        osdeps=args.osdeps,
        verbose=args.verbose,
        debug=args.debug,
        nice=args.nice,
        mail=MailSettings(
            to=list(args.mail_to),
            sender=args.mail_from,
            subject=args.mail_subject,
            smtp_host=args.mail_smtp,
            only_errors=args.mail_only_errors,
        ),
    )


def _error(message: str) -> None:
    if sys.stderr.isatty():
        sys.stderr.write(f"\033[1;31mERROR: {message}\033[0m\n")
    else:
        sys.stderr.write(f"ERROR: {message}\n")


def _finish(report: RunReport, options: RunOptions) -> None:
    sys.stderr.write(report.render())
    if options.mail.enabled:
        try:
            send_mail(report, options.mail)
        except OSError as exc:
            _error(f"cannot send the report by mail: {exc}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    options = options_from_args(args)
    if options is None:
        parser.print_usage(sys.stderr)
        sys.stderr.write(f"unknown mode '{args.mode}'\n")
        return 1

    root = Path(args.root).resolve()
    workspace = Workspace(root)
    configure_logging(workspace.log_dir, verbose=options.verbose)
    if options.nice is not None:
        os.nice(options.nice)

    orchestrator: Optional[Orchestrator] = None
    try:
        config = declare_standard_options(
            ConfigStore.load(workspace.config_path, reconfigure=options.reconfigure)
        )
        orchestrator = Orchestrator(root, options, config=config)
        report = orchestrator.run()
    except ConfigError as exc:
        if options.debug:
            raise
        _error(str(exc))
        return 1
    except KeyboardInterrupt:
        if options.debug:
            raise
        if orchestrator is not None:
            orchestrator.report.interrupted = True
            _finish(orchestrator.report, options)
        else:
            sys.stderr.write("interrupted\n")
        return 1
    except Exception as exc:
        if options.debug:
            raise
        logger.debug("unexpected error", exc_info=True)
        _error(str(exc))
        return 1

    if options.mode in PIPELINE_MODES:
        _finish(report, options)
    return 1 if report.failures else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

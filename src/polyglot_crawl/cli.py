from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .controller import ControllerConfig, OutcomeKind, StepOutcome
from .errors import CrawlError
from .http_client import DEFAULT_USER_AGENT
from .retry import RetryPolicy
from .service import CrawlService, ServiceConfig

EXIT_USAGE = 2
EXIT_FATAL = 3
EXIT_INTEGRITY = 4
EXIT_HANDOFF = 5


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--state-dir", type=Path, default=Path(".polyglot-crawl"))
    p.add_argument("--out", type=Path, default=Path("polyglot-out"))
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )


def _add_crawl_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--timeout", type=int, default=45)
    p.add_argument("--no-robots", action="store_true")
    p.add_argument("--user-agent", default=DEFAULT_USER_AGENT)
    p.add_argument("--nav-delay-min", type=float, default=2.0)
    p.add_argument("--nav-delay-max", type=float, default=4.0)
    p.add_argument("--max-retries", type=int, default=3)
    p.add_argument("--retry-base-delay", type=float, default=2.0)
    p.add_argument("--min-languages", type=int, default=2)
    p.add_argument(
        "--max-empty-fraction",
        type=float,
        default=0.0,
        help="Share of near-empty units tolerated before a page is flagged",
    )
    p.add_argument(
        "--once",
        action="store_true",
        help=(
            "Exit after every navigation; run `resume` again to handle the "
            "next page"
        ),
    )
    p.add_argument("--progress", action="store_true", help="Show a progress bar")


def _config(args: argparse.Namespace) -> ServiceConfig:
    cfg = ServiceConfig(state_dir=args.state_dir, out_dir=args.out)
    if not hasattr(args, "timeout"):
        return cfg

    cfg.timeout_s = int(args.timeout)
    cfg.respect_robots = not bool(args.no_robots)
    cfg.user_agent = str(args.user_agent)
    cfg.once = bool(args.once)
    cfg.progress_bar = bool(args.progress)
    cfg.controller = ControllerConfig(
        retry=RetryPolicy(
            max_retries=int(args.max_retries),
            base_delay_s=float(args.retry_base_delay),
        ),
        nav_delay_min_s=float(args.nav_delay_min),
        nav_delay_max_s=float(args.nav_delay_max),
        min_languages=int(args.min_languages),
        max_empty_fraction=float(args.max_empty_fraction),
    )
    return cfg


def _report(cmd: str, outcome: StepOutcome | None) -> int:
    if outcome is None:
        print(f"{cmd}: no active crawl")
        return 0

    if outcome.kind is OutcomeKind.NAVIGATE:
        print(f"{cmd}: checkpointed; next page {outcome.url} (run `resume`)")
        return 0
    if outcome.kind is OutcomeKind.FAILED:
        print(f"{cmd}: crawl failed: {outcome.error}", file=sys.stderr)
        return EXIT_FATAL

    verdict = outcome.verdict
    if verdict is not None:
        print(
            f"{cmd}: {outcome.kind.value} "
            f"expected={verdict.expected} captured={verdict.captured} "
            f"failed={verdict.failed} skipped={verdict.skipped} "
            f"warnings={verdict.warnings} passed={verdict.passed}"
        )
    if outcome.kind is OutcomeKind.HANDOFF_FAILED:
        print(
            f"{cmd}: hand-off failed, session kept (run `package`): "
            f"{outcome.error}",
            file=sys.stderr,
        )
        return EXIT_HANDOFF
    if outcome.handoff is not None:
        print(f"{cmd}: wrote {outcome.handoff.paths.get('document')}")
    if (
        outcome.kind is OutcomeKind.COMPLETED
        and verdict is not None
        and not verdict.passed
    ):
        return EXIT_INTEGRITY
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="polyglot-crawl")
    sub = parser.add_subparsers(dest="cmd", required=True)

    start_p = sub.add_parser(
        "start",
        help="Open a text's start page, enumerate its sections and crawl them",
    )
    start_p.add_argument("url")
    start_p.add_argument(
        "--max-targets",
        type=int,
        default=None,
        help="Only crawl the first N sections (testing)",
    )
    _add_common_args(start_p)
    _add_crawl_args(start_p)

    resume_p = sub.add_parser(
        "resume",
        help="Continue a stored crawl from its last checkpoint",
    )
    _add_common_args(resume_p)
    _add_crawl_args(resume_p)

    stop_p = sub.add_parser(
        "stop",
        help="Request a stop; partial results are packaged at the next step",
    )
    _add_common_args(stop_p)
    stop_p.add_argument(
        "--finalize",
        action="store_true",
        help="Carry out the stop now (no other process is running the crawl)",
    )

    manifest_p = sub.add_parser("manifest", help="Print the stored manifest")
    _add_common_args(manifest_p)

    package_p = sub.add_parser(
        "package",
        help="Retry the hand-off of a stopped or finished crawl",
    )
    _add_common_args(package_p)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        service = CrawlService(_config(args))
    except OSError as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    try:
        if args.cmd == "start":
            try:
                outcome = service.start(args.url, max_targets=args.max_targets)
            except KeyboardInterrupt:
                outcome = service.stop(finalize=True)
            return _report("start", outcome)

        if args.cmd == "resume":
            try:
                outcome = service.resume()
            except KeyboardInterrupt:
                outcome = service.stop(finalize=True)
            return _report("resume", outcome)

        if args.cmd == "stop":
            session = service.session()
            if session is None or not session.is_active:
                print("stop: no active crawl")
                return 0
            outcome = service.stop(finalize=bool(args.finalize))
            if outcome is None:
                print("stop: requested; the crawl stops at its next step")
                return 0
            return _report("stop", outcome)

        if args.cmd == "manifest":
            session = service.session()
            if session is None:
                print("manifest: no stored crawl")
                return 0
            print(
                json.dumps(
                    {
                        "is_active": session.is_active,
                        "current_index": session.current_index,
                        "verdict": session.manifest.verdict().to_dict(),
                        "manifest": session.manifest.to_dict(),
                        "metrics": session.metrics.summary(),
                    },
                    indent=2,
                    ensure_ascii=False,
                )
            )
            return 0

        if args.cmd == "package":
            return _report("package", service.package())
    except CrawlError as e:
        print(str(e), file=sys.stderr)
        return EXIT_FATAL
    except OSError as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    return EXIT_USAGE

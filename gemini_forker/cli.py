"""
Command line entry point.

Usage::

    # Print the Markdown transcript of a saved page, up to the 3rd reply
    gemini-forker extract --html saved_chat.html --anchor 2

    # Fork the open Gemini tab of a Chrome started with --remote-debugging-port
    gemini-forker fork --cdp-url http://localhost:9222 --retain 70
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import GEMINI_CDP_URL, log_config_summary
from .constants import DEFAULT_SUMMARY_PROMPT
from .models import ForkRequest
from .transcript import extract_transcript, format_transcript

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(filename)s:%(lineno)d - %(message)s"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt="%m/%d/%Y %H:%M:%S",
        level=logging.DEBUG if verbose else logging.INFO,
        stream=sys.stderr,
    )


def _cmd_extract(args: argparse.Namespace) -> int:
    with open(args.html, "r", encoding="utf-8") as f:
        html = f.read()
    messages = extract_transcript(html, anchor=args.anchor)
    if args.json:
        print(json.dumps([{"role": m.role.value, "text": m.text} for m in messages], indent=2))
    else:
        print(format_transcript(messages))
    return 0


def _cmd_fork(args: argparse.Namespace) -> int:
    from .browser import attach_over_cdp

    if not args.cdp_url:
        print("A CDP URL is required (--cdp-url or GEMINI_FORKER_CDP_URL).", file=sys.stderr)
        return 2

    summary_prompt = DEFAULT_SUMMARY_PROMPT
    if args.prompt_file:
        with open(args.prompt_file, "r", encoding="utf-8") as f:
            summary_prompt = f.read()

    log_config_summary()
    with attach_over_cdp(args.cdp_url) as browser:
        browser.prime(reload=not args.no_reload)
        request = ForkRequest(
            anchor=args.anchor,
            retain_percent=args.retain,
            summary_prompt=summary_prompt,
            gem_id=args.gem or browser.detect_gem_id(),
        )
        orchestrator = browser.build_orchestrator(
            navigate=not args.no_navigate,
            notify_fn=lambda message: print(message, file=sys.stderr),
        )
        result = orchestrator.fork(request)

    if not result.success:
        return 1
    print(result.target_url)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gemini-forker",
        description="Fork a Gemini conversation into a new one, optionally summarizing its head.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Print the transcript of a saved Gemini page")
    extract.add_argument("--html", required=True, help="Saved page HTML")
    extract.add_argument("--anchor", type=int, default=None,
                         help="Index of the reply to stop at (negative counts from the end)")
    extract.add_argument("--json", action="store_true", help="Print JSON instead of Markdown")
    extract.set_defaults(func=_cmd_extract)

    fork = sub.add_parser("fork", help="Fork the open Gemini tab of a running browser")
    fork.add_argument("--cdp-url", default=GEMINI_CDP_URL, help="Chrome DevTools endpoint")
    fork.add_argument("--anchor", type=int, default=None,
                      help="Index of the reply to fork at (default: whole conversation)")
    fork.add_argument("--retain", type=int, default=100, choices=range(0, 101, 5),
                      metavar="{0,5,...,100}", help="Percent of recent messages kept verbatim")
    fork.add_argument("--prompt-file", default=None, help="Custom summary instruction")
    fork.add_argument("--gem", default=None, help="Gem id (default: detected from the tab URL)")
    fork.add_argument("--no-reload", action="store_true",
                      help="Do not reload the tab to capture credentials")
    fork.add_argument("--no-navigate", action="store_true",
                      help="Print the new conversation URL without opening it")
    fork.set_defaults(func=_cmd_fork)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

"""
Interactive terminal conversation for refining a property search.

Each line you type is resolved against the current filters; the updated
filters are printed after every turn:

    python -m cli.console --location "La Jolla, CA"
"""

from __future__ import annotations

import argparse
import json
from typing import Any, Callable, Dict, Optional

from search.errors import PromptParseFailed
from search.session import FilterSession

EXIT_COMMANDS = {"quit", "exit", "q"}
PARSE_FAILED_NOTICE = "Sorry, I couldn't understand that or the assistant is unavailable. Please try again."


def _render_filters(filters: Dict[str, Any]) -> str:
    shown = {k: v for k, v in filters.items() if v not in ("", [], None)}
    return json.dumps(shown, indent=2, ensure_ascii=False)


def run_console(
    initial_location: Optional[str] = None,
    *,
    session: Optional[FilterSession] = None,
    input_fn: Callable[[str], str] = input,
    output_fn: Callable[[str], None] = print,
) -> FilterSession:
    """
    Run the prompt loop until the user exits or input ends.

    Args:
        initial_location: optional starting location for the search.
        session: an existing session to continue; a new one is created otherwise.
    """
    if session is None:
        seed = {"location": initial_location} if initial_location else None
        session = FilterSession(filters=seed)

    output_fn("Coastal Compass: describe the home you're looking for (type 'quit' to leave).")
    output_fn(_render_filters(session.filters))
    while True:
        try:
            text = input_fn("> ").strip()
        except EOFError:
            break
        if not text:
            continue
        if text.lower() in EXIT_COMMANDS:
            break
        try:
            result = session.send(text)
        except PromptParseFailed:
            output_fn(PARSE_FAILED_NOTICE)
            continue
        if result.get("message"):
            output_fn(result["message"])
        output_fn(_render_filters(result["filters"]))
    return session


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Coastal Compass conversational search")
    parser.add_argument(
        "--location",
        "-l",
        metavar="PLACE",
        help="Optional starting location (defaults to Aptos, CA).",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    run_console(args.location)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Site entry point: wait for the agent, send one command, log a summary.

Exit codes:
- 0: the agent answered and the app is installed
- 1: the agent was unreachable, rejected the request or answered garbage
- 2: the agent answered but the app is not installed
"""
from __future__ import annotations

import asyncio
import sys

from mbf_agent.api.messages import MessageError, Response
from mbf_agent.logging_conf import get_logger, setup_logging
from mbf_site.cli import parse_args
from mbf_site.client import get_mod_status, patch, wait_for_health
from mbf_site.types import AgentRequestError, SiteError

setup_logging()
logger = get_logger("site")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_INSTALLED = 2


def summarize(command: str, response: Response) -> tuple[dict, int]:
    """Build the summary event and exit code for an answered command."""
    info = response.app_info
    summary = {
        "component": "site",
        "event": "summary",
        "command": command,
        "installed": info is not None,
        "version": info.version if info else None,
        "is_modded": info.is_modded if info else None,
    }
    return summary, EXIT_OK if info is not None else EXIT_NOT_INSTALLED


async def run_command(*, command: str, base_url: str, health_timeout_s: float = 20.0) -> int:
    try:
        await wait_for_health(base_url, health_timeout_s)
        if command == "patch":
            response = await patch(base_url)
        else:
            response = await get_mod_status(base_url)
    except AgentRequestError as e:
        logger.error(
            "site.rejected",
            extra={"event": "rejected", "command": command, "error_code": e.code, "error": e.message},
        )
        return EXIT_ERROR
    except (SiteError, MessageError) as e:
        logger.error("site.failed", extra={"event": "failed", "command": command, "error": str(e)})
        return EXIT_ERROR

    summary, exit_code = summarize(command, response)
    logger.info("site.summary", extra=summary)
    return exit_code


def main(argv: list[str] | None = None) -> None:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    code = asyncio.run(
        run_command(command=args.command, base_url=args.base_url, health_timeout_s=args.timeout)
    )
    raise SystemExit(code)


if __name__ == "__main__":
    main()

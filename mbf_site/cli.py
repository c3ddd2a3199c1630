from __future__ import annotations

import argparse
import os


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments for the site client."""
    parser = argparse.ArgumentParser(description="Query or patch the app through the mod agent")
    parser.add_argument("command", choices=["status", "patch"])
    parser.add_argument("--base-url", default=os.getenv("MBF_AGENT_URL", "http://127.0.0.1:8000"))
    parser.add_argument("--timeout", type=float, default=20.0, help="health wait in seconds")
    return parser.parse_args(argv)

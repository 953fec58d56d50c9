"""
rosapi – run one RouterOS API command from the command line.

Connection settings come from config.py (.env / environment).

  python rosapi.py /system/identity/print
  python rosapi.py /interface/print ?type=ether
  python rosapi.py /ip/address/print =.proplist=address,interface
"""

import asyncio
import logging
import sys

from config import ENCODING, HOST, LOG_LEVEL, MOCK, PASSWORD, PORT, TIMEOUT, USERNAME
from roscomm.client import RouterAPIClient
from roscomm.errors import APIError, RosError
from roscomm.mock_router import FakeRouter, MockTransport

# ─── Logging ─────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger("rosapi")


def parse_args(argv: list[str]) -> tuple[str, dict, list[str]]:
    if not argv or not argv[0].startswith("/"):
        raise ValueError("usage: rosapi.py /path/command [=key=value ...] [?query ...]")
    params: dict = {}
    queries: list[str] = []
    for word in argv[1:]:
        if word.startswith("?"):
            queries.append(word)
        elif word.startswith("="):
            key, _, value = word[1:].partition("=")
            params[key] = value
        else:
            raise ValueError(f"Unexpected argument {word!r}: use =key=value or ?query")
    return argv[0], params, queries


def make_client() -> RouterAPIClient:
    transport = None
    if MOCK:
        log.info("ROS_MOCK set, using the built-in fake router")
        transport = MockTransport(FakeRouter(USERNAME, PASSWORD), auto_pump=True)
    return RouterAPIClient(
        HOST, USERNAME, PASSWORD,
        port=PORT, timeout=TIMEOUT, encoding=ENCODING, transport=transport,
    )


async def main(argv: list[str]) -> int:
    try:
        path, params, queries = parse_args(argv)
    except ValueError as e:
        print(e, file=sys.stderr)
        return 2

    client = make_client()
    if not await client.connect():
        print(f"Login failed: {client.last_error}", file=sys.stderr)
        return 1

    try:
        rows = await client.command(path, params, queries)
    except APIError as e:
        print(f"!trap {e}" + (f" (category {e.category})" if e.category else ""), file=sys.stderr)
        return 1
    except (RosError, asyncio.TimeoutError) as e:
        print(f"Error: {str(e) or 'timed out'}", file=sys.stderr)
        return 1
    finally:
        await client.close()

    for row in rows:
        print("!re")
        for key, value in row.items():
            print(f"  {key}={value}")
    print("!done")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main(sys.argv[1:])))
    except KeyboardInterrupt:
        sys.exit(130)

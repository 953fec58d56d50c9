#!/usr/bin/env python3
"""
Diagnostic script to check the RouterOS API connection settings
"""

import asyncio
import os
import sys
from pathlib import Path

from roscomm.client import RouterAPIClient
from roscomm.errors import APIError

RECOMMENDATIONS = """
1. Enable the API service on the router:
   • /ip service enable api
   • Check the port: /ip service print

2. Check the user:
   • The user group needs the 'api' and 'read' policies
   • /user print detail

3. Check the network:
   • The firewall input chain must accept TCP 8728 from this host
   • /ip service set api address=<this host>/32 restricts access

Common issues:
• "cannot login"            – wrong API service or an old RouterOS version
• "invalid username or password" – check ROS_USER / ROS_PASS in .env
• "Connection refused"      – API service disabled or wrong port
"""


async def try_login(client: RouterAPIClient) -> bool:
    ok = await client.connect()
    if not ok:
        print(f"   ❌ Login failed: {client.last_error}")
        return False
    try:
        identity = await client.command_one("/system/identity/print")
    except APIError as e:
        print(f"   ❌ Logged in, but /system/identity/print failed: {e}")
        return False
    except asyncio.TimeoutError:
        print(f"   ❌ Logged in, but the router did not answer within {client.timeout}s")
        return False
    finally:
        await client.close()
    print(f"   ✅ Logged in, router identity: {(identity or {}).get('name', 'unknown')}")
    return True


def main() -> int:
    print("=" * 70)
    print("  RouterOS API Configuration Diagnostic")
    print("=" * 70)
    print()

    # Check .env file exists
    env_file = Path(".env")
    if not env_file.exists():
        print("⚠️  .env file NOT FOUND, using process environment only")
        print("   Create it with: cp .env.example .env")
    else:
        print("✅ .env file exists")

    # Load configuration
    print("\n🔧 Loading config.py...")
    try:
        import config
    except SystemExit:
        print("   ❌ ROS_HOST is not set (or set ROS_MOCK=1 for demo mode)")
        return 1

    masked = "***" if config.PASSWORD else "(empty)"
    print(f"   ROS_HOST     = {config.HOST}{'  (mock)' if config.MOCK else ''}")
    print(f"   ROS_PORT     = {config.PORT}")
    print(f"   ROS_USER     = {config.USERNAME}")
    print(f"   ROS_PASS     = {masked}")
    print(f"   ROS_TIMEOUT  = {config.TIMEOUT}s")
    print(f"   ROS_ENCODING = {config.ENCODING}")
    print(f"   LOG_LEVEL    = {config.LOG_LEVEL}")

    if config.PORT == 8729:
        print("   ⚠️  Port 8729 is api-ssl; TLS is not supported, use the plain api service (8728)")
    if not os.environ.get("ROS_PASS"):
        print("   ⚠️  ROS_PASS is empty – fine only for a router without an admin password")

    # Try logging in
    from rosapi import make_client

    print(f"\n🔍 Trying to log in to {config.HOST}:{config.PORT}...")
    ok = asyncio.run(try_login(make_client()))

    print("\n" + "=" * 70)
    print("  Recommendations:")
    print("=" * 70)
    print(RECOMMENDATIONS)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())

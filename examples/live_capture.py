#!/usr/bin/env python3
"""
Live Capture Example
====================

This example loads a real page in Chrome, snapshots its DOM (open shadow
roots included) and re-applies the patches saved for that address.

Usage:
    python examples/live_capture.py https://example.com
"""

import asyncio
import sys

from pagepatch import PatchSession
from pagepatch.core.driver_factory import browser_session, capture_document
from pagepatch.layers.memory import JsonFileStorage


async def run(url: str):
    with browser_session(headless=True) as driver:
        driver.get(url)
        print(f"Page title: {driver.title}")
        document = capture_document(driver)

    session = PatchSession(document, JsonFileStorage("./.pagepatch/patches.json"))
    # Apply, retry for late content, then follow mutations
    report = await session.boot()
    session.deactivate()

    print(f"Scope: {session.scope_key}")
    print(f"Patches: {len(session.patches)}")
    print(f"Applied on boot: {report.applied}")


def main():
    """Capture a page and reconcile its patches."""
    url = sys.argv[1] if len(sys.argv) > 1 else "https://example.com"

    print("=" * 60)
    print("🩹 pagepatch - Live Capture")
    print("=" * 60)
    print()

    asyncio.run(run(url))


if __name__ == "__main__":
    main()

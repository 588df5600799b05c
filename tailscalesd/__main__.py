#!/usr/bin/env python3
"""
tailscalesd CLI Entry Point

Allows running tailscalesd as a module: python -m tailscalesd
"""

from __future__ import annotations

import asyncio
import sys

from tailscalesd.core.service import main as tailscalesd_main


def cli() -> None:
    try:
        sys.exit(asyncio.run(tailscalesd_main()))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
    except Exception as e:
        print(f"Fatal error: {e.__class__.__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()

"""
Poller Module Entry Point

Allows execution via: python -m apps.poller

Delegates to the scheduler for all execution.
"""

import asyncio

from apps.poller.scheduler import main

if __name__ == "__main__":
    asyncio.run(main())

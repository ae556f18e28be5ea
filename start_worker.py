#!/usr/bin/env python3
"""
Webhook Retry Worker Runner

Starts the worker that delivers scheduled webhook retries from MongoDB.
SIGINT/SIGTERM stop it after the job in flight finishes.
"""

import asyncio
import signal
import sys

from workers.webhook_retry_worker import run_retry_worker


async def _main() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still stops the loop
            pass
    await run_retry_worker(stop=stop)


def main():
    """Main function to start the webhook retry worker"""
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        print("\nWorker stopped by user")
    except Exception as e:
        print(f"\nWorker failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

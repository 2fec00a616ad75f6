"""Application entrypoint (job workers + internal FastAPI)."""

import asyncio
import contextlib
import signal
import sys

from .config.settings import get_settings
from .http_server import run_http_server
from .lifespan import lifespan_manager


async def main() -> None:
    """Main application entrypoint."""
    async with lifespan_manager() as container:
        settings = get_settings()
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop.set)

        http_task = None
        if settings.http_enable:
            http_task = asyncio.create_task(run_http_server(container))
        try:
            # Workers run on the dispatcher's tasks; wait for a shutdown signal.
            await stop.wait()
        finally:
            if http_task:
                http_task.cancel()
                with contextlib.suppress(Exception, asyncio.CancelledError):
                    await http_task


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutting down...")
        sys.exit(0)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)

import asyncio
import signal
import sys


class GracefulShutdownManager:
    """Turns SIGINT/SIGTERM into cancellation of the running tasks, once."""

    def __init__(self, loop: asyncio.AbstractEventLoop, timeout: float = 10.0):
        self.loop = loop
        self.timeout = timeout
        self.shutdown_requested = False

    def setup_signal_handlers(self):
        if sys.platform != 'win32':
            for sig in (signal.SIGINT, signal.SIGTERM):
                self.loop.add_signal_handler(sig, lambda s=sig: self.handle_signal(s))
        else:
            signal.signal(signal.SIGINT, lambda s, f: self.handle_signal(s))

    def handle_signal(self, sig: int):
        if self.shutdown_requested:
            return
        self.shutdown_requested = True
        print(f"Received signal {sig}, stopping dashboard backend...")
        if self.loop.is_running() and not self.loop.is_closed():
            self.loop.create_task(self.shutdown_gracefully(), name="GracefulShutdown")

    async def shutdown_gracefully(self):
        # Cancelling the main task runs DashboardApp.shutdown() from its finally block
        pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task() and not t.done()]
        if pending:
            print(f"Cancelling {len(pending)} tasks...")
            for task in pending:
                task.cancel()
            _, still_pending = await asyncio.wait(pending, timeout=self.timeout)
            if still_pending:
                print(f"Some tasks didn't complete in time: {[t.get_name() for t in still_pending]}")
        try:
            await asyncio.wait_for(self.loop.shutdown_asyncgens(), timeout=2.0)
        except asyncio.TimeoutError:
            print("Timed out shutting down async generators")

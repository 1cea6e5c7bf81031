import asyncio
import logging
import sys
from typing import Awaitable, Callable

from pricecheck.config import Settings
from pricecheck.server import rpc
from pricecheck.server.dispatcher import McpDispatcher, build_dispatcher
from pricecheck.server.framing import LineFramer
from pricecheck.session_client import SessionClient

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


async def read_stdin_chunk() -> bytes:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, sys.stdin.buffer.read1, READ_CHUNK_SIZE)


def write_stdout(data: bytes) -> None:
    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()


class StdioServer:
    """Line-delimited JSON-RPC over stdin/stdout.

    Every complete input line is dispatched in its own task, so a long price
    check never blocks a concurrent ``ping`` or ``tools/list``. Output frames
    are written whole, one per line, under a lock.
    """

    def __init__(
        self,
        dispatcher: McpDispatcher,
        read_chunk: Callable[[], Awaitable[bytes]] = read_stdin_chunk,
        write: Callable[[bytes], None] = write_stdout,
    ):
        self.dispatcher = dispatcher
        self.read_chunk = read_chunk
        self.write = write
        self._framer = LineFramer()
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    async def serve(self) -> None:
        logger.info("Stdio transport ready, waiting for requests")
        try:
            while True:
                chunk = await self.read_chunk()
                if not chunk:
                    break
                for line in self._framer.feed(chunk):
                    task = asyncio.create_task(self._handle_line(line))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
        finally:
            if self._framer.pending.strip():
                logger.warning("Input ended inside a line, discarding it")
            await self._cancel_in_flight()
        logger.info("Stdin closed, stdio transport stopped")

    async def _handle_line(self, line: bytes) -> None:
        try:
            async for frame in self.dispatcher.stream(line):
                await self._write_frame(frame)
        except Exception as e:
            logger.error(f"Failed to answer request: {e}", exc_info=True)

    async def _write_frame(self, frame: dict) -> None:
        data = (rpc.encode(frame) + "\n").encode("utf-8")
        async with self._write_lock:
            self.write(data)

    async def _cancel_in_flight(self) -> None:
        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return
        logger.info(f"Cancelling {len(pending)} in-flight request(s)")
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


async def run_stdio_server(settings: Settings) -> None:
    async with SessionClient.create_http_client(settings.api_base_url, settings.backend_timeout_seconds) as http_client:
        dispatcher = build_dispatcher(
            settings,
            http_client,
            transport_name="stdio",
            budget_seconds=settings.stdio_poll_budget_seconds,
        )
        await StdioServer(dispatcher).serve()

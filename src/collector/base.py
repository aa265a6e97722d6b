# src/collector/base.py
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)

INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 60.0


class StreamCollector(ABC):
    """长连接推送流的后台任务: 断线后指数退避重连"""

    def __init__(self, name: str, max_backoff: float = MAX_BACKOFF):
        self.name = name
        self.max_backoff = max_backoff
        self.running = False
        self.reconnects = 0
        self._task: asyncio.Task[None] | None = None

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def disconnect(self) -> None: ...

    @abstractmethod
    async def receive(self) -> Any:
        """阻塞直到收到下一条消息，连接断开时抛异常"""

    @abstractmethod
    async def _process_message(self, message: Any) -> None: ...

    def next_backoff(self, current: float) -> float:
        return min(current * 2, self.max_backoff)

    async def start(self) -> None:
        self.running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"{self.name} stream started")

    async def stop(self) -> None:
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.disconnect()
        logger.info(f"{self.name} stream stopped after {self.reconnects} reconnects")

    async def _run(self) -> None:
        backoff = INITIAL_BACKOFF
        while self.running:
            try:
                await self.connect()
                backoff = INITIAL_BACKOFF
                while self.running:
                    await self._process_message(await self.receive())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self.running:
                    break
                self.reconnects += 1
                logger.warning(f"{self.name} stream error: {e}, reconnecting in {backoff:.0f}s")
                await self.disconnect()
                await asyncio.sleep(backoff)
                backoff = self.next_backoff(backoff)

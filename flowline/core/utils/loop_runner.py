# flowline/core/utils/loop_runner.py
"""Blocking entry point onto a private asyncio loop thread.

``WorkflowEngine.run()`` hands the walk to this bridge so it can be called
from plain scripts as well as from code that already drives its own loop.
"""

from __future__ import annotations

import asyncio
import atexit
import contextlib
import threading
from concurrent.futures import Future
from enum import Enum
from typing import Any, Awaitable, Callable

from flowline.core.logging import get_logger


class LoopRunnerError(RuntimeError):
    """Infrastructure failure in the sync->async bridge."""


class RunnerState(str, Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    STOPPED = 'stopped'


class LoopRunner:
    """Owns one event loop on a daemon thread and runs coroutines on it.

    A runner starts lazily on the first ``call`` and moves IDLE -> RUNNING ->
    STOPPED. It cannot be restarted once stopped. Coroutines still pending
    when the loop stops are cancelled and awaited on the loop thread.
    """

    def __init__(self, name: str = 'flowline-loop', stop_timeout: float = 2.0) -> None:
        self.name = name
        self.stop_timeout = stop_timeout
        self.logger = get_logger('loop_runner')
        self.state = RunnerState.IDLE
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._lock = threading.RLock()

    @property
    def in_runner_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def _serve(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(self._ready.set)
        loop.run_forever()
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.run_until_complete(loop.shutdown_asyncgens())

    def start(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self.state is RunnerState.STOPPED:
                raise LoopRunnerError('Loop runner has been stopped and cannot be restarted')
            if self.state is RunnerState.RUNNING and self._loop is not None:
                return self._loop

            loop = asyncio.new_event_loop()
            thread = threading.Thread(
                target=self._serve, args=(loop,), name=self.name, daemon=True,
            )
            self._ready.clear()
            try:
                thread.start()
            except RuntimeError as exc:
                loop.close()
                raise LoopRunnerError(
                    f'Failed to start loop runner thread: {type(exc).__name__}: {exc}',
                ) from exc
            self._ready.wait()
            self._loop, self._thread = loop, thread
            self.state = RunnerState.RUNNING
            self.logger.debug(f"Loop thread '{self.name}' started")
            return loop

    def stop(self) -> None:
        if self.in_runner_thread:
            raise LoopRunnerError('Cannot stop the loop runner from inside its own thread')
        with self._lock:
            loop, thread = self._loop, self._thread
            if self.state is RunnerState.RUNNING and loop is not None:
                loop.call_soon_threadsafe(loop.stop)
                if thread is not None:
                    thread.join(timeout=self.stop_timeout)
                    if thread.is_alive():
                        self.logger.warning(
                            f"Loop thread '{self.name}' still busy after "
                            f'{self.stop_timeout}s; leaving its loop open'
                        )
                        return
                loop.close()
                self._loop = None
                self._thread = None
            self.state = RunnerState.STOPPED

    def call(
        self, coro_fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Any:
        """Run ``coro_fn(*args, **kwargs)`` on the loop thread and wait for it.

        Interrupting the waiting caller (Ctrl-C) cancels the coroutine.

        Raises:
            LoopRunnerError: If called from the loop thread itself, after
                ``stop()``, or if the coroutine cannot be scheduled.
        """
        if self.in_runner_thread:
            # Blocking here would wait on our own loop forever
            raise LoopRunnerError(
                'Cannot block on the loop runner from inside its own thread; '
                'await the coroutine instead'
            )
        loop = self.start()

        coro: Awaitable[Any] | None = None
        try:
            coro = coro_fn(*args, **kwargs)
            fut: Future[Any] = asyncio.run_coroutine_threadsafe(coro, loop)  # type: ignore[arg-type]
        except Exception as exc:
            if asyncio.iscoroutine(coro):
                with contextlib.suppress(RuntimeError):
                    coro.close()
            raise LoopRunnerError(
                f'Failed to schedule coroutine on loop runner: {type(exc).__name__}: {exc}',
            ) from exc

        try:
            return fut.result()
        except BaseException:
            fut.cancel()
            raise


_shared_runner: LoopRunner | None = None
_shared_lock = threading.Lock()


def _shutdown_shared_runner() -> None:
    global _shared_runner
    with _shared_lock:
        runner, _shared_runner = _shared_runner, None
    if runner is not None:
        runner.stop()


def get_shared_runner() -> LoopRunner:
    """Return the process-wide runner used by ``WorkflowEngine.run()``."""
    global _shared_runner
    with _shared_lock:
        if _shared_runner is None:
            _shared_runner = LoopRunner()
            atexit.register(_shutdown_shared_runner)
        return _shared_runner

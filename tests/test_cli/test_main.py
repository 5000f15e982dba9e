import asyncio

import pytest

from deepcode.main import schedule_interrupt


class FakeManager:
    def __init__(self, running: bool = True, error: Exception | None = None):
        self.running = running
        self.error = error
        self.interrupted: list[str] = []

    def get_active_session_id(self) -> str | None:
        return "s1"

    def is_running(self, session_id: str) -> bool:
        return self.running

    async def interrupt_session(self, session_id: str) -> None:
        self.interrupted.append(session_id)
        if self.error is not None:
            raise self.error


@pytest.mark.asyncio
async def test_schedule_interrupt_tracks_task_until_done():
    manager = FakeManager()
    pending: set[asyncio.Task] = set()

    task = schedule_interrupt(manager, pending)

    assert task in pending
    await task
    await asyncio.sleep(0)
    assert pending == set()
    assert manager.interrupted == ["s1"]


@pytest.mark.asyncio
async def test_schedule_interrupt_collects_failures():
    manager = FakeManager(error=RuntimeError("store offline"))
    pending: set[asyncio.Task] = set()

    task = schedule_interrupt(manager, pending)
    await asyncio.wait({task})
    await asyncio.sleep(0)

    assert pending == set()
    assert isinstance(task.exception(), RuntimeError)


@pytest.mark.asyncio
async def test_schedule_interrupt_skips_idle_session():
    manager = FakeManager(running=False)
    pending: set[asyncio.Task] = set()

    assert schedule_interrupt(manager, pending) is None
    assert pending == set()
    assert manager.interrupted == []

"""Asyncio helpers for the monitor's periodic loops."""
import asyncio


async def sleep_until_stopped(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to `seconds`, waking early if stop is requested. Returns True if stopped."""
    if seconds <= 0:
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


def start_loop(name: str, coro_fn, stop_event: asyncio.Event) -> asyncio.Task:
    """Start coro_fn(stop_event) as a named background task and return the task."""
    return asyncio.create_task(coro_fn(stop_event), name=name)

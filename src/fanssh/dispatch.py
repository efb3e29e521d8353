"""Fan a command out to many hosts with a bounded result channel.

Every host gets its own task as soon as it is reached in the host list.
Finished jobs hand their result to a queue sized to the job limit, and the
dispatcher drains that queue in batches: after every ``max_jobs`` launches
it waits for ``max_jobs`` results before launching more. This bounds the
number of finished results waiting to be consumed, not the number of
sessions open at once.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar

from fanssh.auth import build_auth
from fanssh.config import RunOptions
from fanssh.executor import JobResult, execute
from fanssh.hosts import HostDescriptor
from fanssh.log import get_logger


log = get_logger(__name__)

T = TypeVar("T")

Executor = Callable[[HostDescriptor, RunOptions], Awaitable[JobResult]]


class TimeoutExceeded(Exception):
    """Raised when the whole run outlives its deadline."""

    pass


def effective_max_jobs(max_jobs: int | None, host_count: int) -> int:
    """Return the job limit actually used for a run.

    Unset or 0 means one job per host, and the limit never exceeds the
    number of hosts.
    """
    if not max_jobs:
        return host_count
    return min(max_jobs, host_count)


def configure_hosts(
    hosts: list[HostDescriptor],
    options: RunOptions,
    prompt: Callable[[str], str] | None = None,
) -> None:
    """Build each host's authentication config ahead of dispatch.

    Args:
        hosts: Hosts to configure.
        options: Run options.
        prompt: Asks for a missing password. None disables prompting.
    """
    for host in hosts:
        host.config = build_auth(host, options, prompt=prompt)


async def dispatch(
    hosts: list[HostDescriptor],
    options: RunOptions,
    executor: Executor = execute,
) -> AsyncIterator[JobResult]:
    """Run the command on every host and yield results as they are drained.

    With a job limit of 1 the hosts run one after another and results come
    out in host order. Otherwise results come out in completion order.

    Args:
        hosts: Hosts to run on, each used by exactly one job.
        options: Run options. ``max_jobs`` bounds the result channel.
        executor: Coroutine that runs one job. Must not raise.

    Yields:
        JobResult: Exactly one per host.
    """
    limit = effective_max_jobs(options.max_jobs, len(hosts))
    if limit == 0:
        return

    channel: asyncio.Queue[JobResult] = asyncio.Queue(maxsize=limit)
    tasks: set[asyncio.Task] = set()

    async def _job(host: HostDescriptor) -> None:
        await channel.put(await executor(host, options))

    def _spawn(host: HostDescriptor) -> None:
        log.debug("spawning job", job=host.id)
        task = asyncio.create_task(_job(host))
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    log.debug("dispatching", hosts=len(hosts), max_jobs=limit)
    try:
        if limit < 2:
            for host in hosts:
                _spawn(host)
                log.debug("draining jobs", count=1)
                yield await channel.get()
            return

        drained = 0
        for launched, host in enumerate(hosts, start=1):
            _spawn(host)
            if launched % limit == 0 and launched < len(hosts):
                log.debug("draining jobs", count=limit)
                for _ in range(limit):
                    yield await channel.get()
                drained += limit

        remaining = len(hosts) - drained
        log.debug("draining remaining jobs", count=remaining)
        for _ in range(remaining):
            yield await channel.get()
    finally:
        for task in list(tasks):
            task.cancel()


async def run_with_deadline(awaitable: Awaitable[T], timeout: float) -> T:
    """Await something under a global deadline.

    Args:
        awaitable: The work to run, typically the whole dispatch.
        timeout: Seconds allowed; 0 means no deadline.

    Returns:
        Whatever the awaitable returns.

    Raises:
        TimeoutExceeded: If the deadline passes first. Work in flight is
            cancelled and its partial results are lost.
    """
    if not timeout:
        return await awaitable
    try:
        async with asyncio.timeout(timeout):
            return await awaitable
    except TimeoutError as exc:
        raise TimeoutExceeded(f"timed out after {timeout:g} seconds") from exc

"""Progress snapshots, sinks and cooperative cancellation."""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from mvarchive.exceptions import ArchiveCancelledError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ArchiveProgress:
    """Immutable snapshot of an archive run.

    The engine builds a new snapshot with :meth:`evolve` after every unit of
    work and pushes it to the run's sink; consumers only ever read.
    """

    current_table: str = ""
    current_record: int = 0
    total_records: int = 0
    current_project: str = ""
    projects_processed: int = 0
    total_projects: int = 0
    tables_processed: int = 0
    total_tables: int = 0
    status: str = ""
    is_complete: bool = False
    is_cancelled: bool = False
    error: Optional[str] = None
    # (project_key, error message) pairs collected by a bulk run
    failed_projects: tuple[tuple[str, str], ...] = ()
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None

    def evolve(self, **changes: Any) -> "ArchiveProgress":
        """Return a copy of this snapshot with ``changes`` applied."""
        return replace(self, **changes)

    def finish(self, status: str, **changes: Any) -> "ArchiveProgress":
        """Return a completed copy stamped with an end time."""
        return replace(self, status=status, is_complete=True, end_time=utcnow(), **changes)

    @property
    def succeeded(self) -> bool:
        return self.is_complete and not self.is_cancelled and self.error is None

    @property
    def percent_records(self) -> float:
        if self.total_records <= 0:
            return 0.0
        return min(100.0, self.current_record * 100.0 / self.total_records)

    @property
    def elapsed(self) -> timedelta:
        return (self.end_time or utcnow()) - self.start_time

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logs."""
        data = asdict(self)
        data["start_time"] = self.start_time.isoformat()
        data["end_time"] = self.end_time.isoformat() if self.end_time else None
        data["failed_projects"] = dict(self.failed_projects)
        return data


ProgressSink = Callable[[ArchiveProgress], None]


def null_sink(progress: ArchiveProgress) -> None:
    """Sink that discards snapshots."""


class ProgressChannel:
    """Sink that buffers snapshots for an async consumer.

    Pass the channel as the progress sink of a run started on a background
    task and iterate it from the presentation side::

        channel = ProgressChannel()
        task = asyncio.create_task(engine.archive_project(key, channel))
        channel.follow(task)
        async for snapshot in channel:
            render(snapshot)

    Iteration ends once :meth:`close` was called and buffered snapshots are
    drained. With ``maxsize`` set, a slow consumer loses the oldest buffered
    snapshots rather than holding up the run; the newest one is always kept.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0) -> None:
        if maxsize < 0:
            raise ValueError("maxsize must not be negative")
        self.maxsize = maxsize
        # unbounded underneath so close() can always enqueue its marker
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self.dropped = 0

    def __call__(self, progress: ArchiveProgress) -> None:
        if self._closed:
            return
        if self.maxsize and self._queue.qsize() >= self.maxsize:
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(progress)

    def close(self) -> None:
        """Stop iteration once buffered snapshots are drained."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    def follow(self, task: "asyncio.Future[Any]") -> None:
        """Close the channel when ``task`` finishes, whatever its outcome."""
        task.add_done_callback(lambda _: self.close())

    def __aiter__(self) -> AsyncIterator[ArchiveProgress]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ArchiveProgress]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class CancellationToken:
    """Cooperative cancellation flag checked between batches and tables."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str = "") -> None:
        """Raise :class:`ArchiveCancelledError` when cancellation was requested."""
        if self._event.is_set():
            raise ArchiveCancelledError(
                "Archive cancelled",
                context={"at": where} if where else None,
            )

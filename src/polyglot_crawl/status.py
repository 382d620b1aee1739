from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Protocol

from tqdm import tqdm

from .manifest import EventLog

logger = logging.getLogger(__name__)


class StatusType(str, Enum):
    LOG = "LOG"
    STATUS = "STATUS"
    PROGRESS = "PROGRESS"
    ERROR = "ERROR"
    COMPLETE = "COMPLETE"


class StatusChannel(Protocol):
    def emit(self, type_: StatusType, payload: dict[str, Any]) -> None: ...


class EventLogChannel:
    """Writes every status event to ``<dir>/events.jsonl`` for a UI to tail."""

    def __init__(self, out_dir: Path) -> None:
        self.log = EventLog(out_dir)

    def emit(self, type_: StatusType, payload: dict[str, Any]) -> None:
        self.log.append({"type": type_.value, "payload": payload})


class ProgressBarChannel:
    def __init__(self, *, desc: str = "Sections") -> None:
        self._desc = desc
        self._bar: tqdm | None = None

    def emit(self, type_: StatusType, payload: dict[str, Any]) -> None:
        if type_ is StatusType.PROGRESS:
            total = int(payload.get("total") or 0)
            if self._bar is None:
                self._bar = tqdm(total=total, desc=self._desc, unit="section")
            self._bar.n = max(0, int(payload.get("step") or 0) - 1)
            self._bar.set_postfix_str(str(payload.get("step_name") or ""))
            self._bar.refresh()
        elif type_ in (StatusType.COMPLETE, StatusType.ERROR):
            if self._bar is not None:
                if type_ is StatusType.COMPLETE:
                    self._bar.n = self._bar.total or self._bar.n
                    self._bar.refresh()
                self._bar.close()
                self._bar = None
            if type_ is StatusType.ERROR:
                tqdm.write(f"error: {payload.get('message')}")


class StatusBroadcaster:
    """Fans events out to every channel; a broken channel never stops a crawl."""

    def __init__(self, channels: Iterable[StatusChannel] = ()) -> None:
        self.channels = list(channels)

    def emit(self, type_: StatusType, payload: dict[str, Any] | None = None) -> None:
        payload = dict(payload or {})
        for channel in self.channels:
            try:
                channel.emit(type_, payload)
            except Exception:
                logger.warning(
                    "Status channel %r dropped %s", channel, type_, exc_info=True
                )

    def log(self, message: str) -> None:
        self.emit(StatusType.LOG, {"message": message})

    def status(self, status: str, message: str) -> None:
        self.emit(StatusType.STATUS, {"status": status, "message": message})

    def progress(self, step: int, total: int, step_name: str) -> None:
        self.emit(
            StatusType.PROGRESS, {"step": step, "total": total, "step_name": step_name}
        )

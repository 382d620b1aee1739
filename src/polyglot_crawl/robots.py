from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass
class _Group:
    agents: list[str] = field(default_factory=list)
    allow: list[str] = field(default_factory=list)
    disallow: list[str] = field(default_factory=list)
    crawl_delay_s: float | None = None


class RobotsRules:
    """Small robots.txt reader.

    Picks the group naming our agent token, else the ``*`` group. Within a
    group the longest matching Allow/Disallow prefix wins; ties go to Allow.
    """

    def __init__(self, raw_text: str, *, user_agent: str = "*") -> None:
        groups: list[_Group] = []
        current: _Group | None = None
        in_agent_lines = False

        for line in raw_text.splitlines():
            line = line.split("#", 1)[0].strip()
            if not line:
                continue

            key, _, value = line.partition(":")
            key = key.strip().lower()
            value = value.strip()

            if key == "user-agent":
                if current is None or not in_agent_lines:
                    current = _Group()
                    groups.append(current)
                current.agents.append(value.lower())
                in_agent_lines = True
                continue

            in_agent_lines = False
            if current is None:
                continue
            if key == "allow" and value:
                current.allow.append(value)
            elif key == "disallow" and value:
                current.disallow.append(value)
            elif key == "crawl-delay":
                try:
                    current.crawl_delay_s = float(value)
                except ValueError:
                    pass

        token = user_agent.split("/", 1)[0].strip().lower()
        self._group = self._pick(groups, token)

    @staticmethod
    def _pick(groups: list[_Group], token: str) -> _Group:
        if token and token != "*":
            for group in groups:
                if token in group.agents:
                    return group
        for group in groups:
            if "*" in group.agents:
                return group
        return _Group()

    @property
    def crawl_delay_s(self) -> float | None:
        return self._group.crawl_delay_s

    def can_fetch(self, url: str) -> bool:
        path = urlparse(url).path or "/"
        query = urlparse(url).query
        if query:
            path = f"{path}?{query}"

        best_allow = max(
            (len(p) for p in self._group.allow if path.startswith(p)), default=-1
        )
        best_disallow = max(
            (len(p) for p in self._group.disallow if path.startswith(p)), default=-1
        )
        return best_allow >= best_disallow


@dataclass
class RobotsCache:
    robots_dir: Path

    def __post_init__(self) -> None:
        self.robots_dir.mkdir(parents=True, exist_ok=True)

    def _path_for_host(self, host: str) -> Path:
        host = host.lower().replace(":", "_")
        return self.robots_dir / f"{host}.txt"

    def load_text(self, host: str) -> str | None:
        path = self._path_for_host(host)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8", errors="replace")

    def store(self, host: str, text: str) -> None:
        self._path_for_host(host).write_text(
            text,
            encoding="utf-8",
            newline="\n",
        )

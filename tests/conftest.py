from __future__ import annotations

import random

import pytest
from fakes import FakeHttp, ListChannel, Sleeps

from polyglot_crawl.controller import ControllerConfig
from polyglot_crawl.retry import RetryPolicy
from polyglot_crawl.service import CrawlService, ServiceConfig


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def sleeps() -> Sleeps:
    return Sleeps()


@pytest.fixture
def channel() -> ListChannel:
    return ListChannel()


@pytest.fixture
def make_service(tmp_path, http, sleeps, channel):
    """Builds services sharing one state dir, like separate processes would."""

    def _make(*, sink=None, **overrides) -> CrawlService:
        cfg = ServiceConfig(
            state_dir=tmp_path / "state",
            out_dir=tmp_path / "out",
            controller=ControllerConfig(
                retry=RetryPolicy(max_retries=3, base_delay_s=0.01),
                expand_settle_s=0.0,
            ),
        )
        for name, value in overrides.items():
            setattr(cfg, name, value)
        return CrawlService(
            cfg,
            http=http,
            sink=sink,
            channels=[channel],
            sleep=sleeps,
            rng=random.Random(7),
        )

    return _make

from __future__ import annotations

import pytest

from polyglot_crawl.manifest import EventLog, IntegrityManifest
from polyglot_crawl.metrics import MetricsRecorder


def test_verdict_passes_only_when_everything_was_captured():
    manifest = IntegrityManifest.begin(2)
    manifest.record_capture()
    manifest.record_capture()
    manifest.warn("Validation issues for Section 1: 1 unit(s) appear empty")

    verdict = manifest.verdict()
    assert verdict.passed
    assert verdict.warnings == 1


def test_failures_and_skips_fail_the_verdict():
    manifest = IntegrityManifest.begin(3)
    manifest.record_capture()
    manifest.record_failure("2", "Part 2", "failed after 3 attempts")
    manifest.record_skip("3", "Part 3", "disallowed by robots.txt")

    verdict = manifest.verdict()
    assert not verdict.passed
    assert (verdict.captured, verdict.failed, verdict.skipped) == (1, 1, 1)
    assert manifest.resolved_count == manifest.expected_count


def test_manifest_never_accounts_for_more_than_expected():
    manifest = IntegrityManifest.begin(1)
    manifest.record_capture()
    with pytest.raises(ValueError):
        manifest.record_failure("2", "Part 2", "boom")


def test_finish_stamps_end_once():
    manifest = IntegrityManifest.begin(1)
    manifest.finish()
    assert manifest.ended_at is not None

    manifest.ended_at = "2024-01-01T00:00:00Z"
    manifest.finish()
    assert manifest.ended_at == "2024-01-01T00:00:00Z"


def test_manifest_round_trips():
    manifest = IntegrityManifest.begin(2)
    manifest.record_failure("1", "Part 1", "boom")
    manifest.warn("something odd")
    assert IntegrityManifest.from_dict(manifest.to_dict()) == manifest


def test_metrics_summary():
    metrics = MetricsRecorder()
    metrics.record_page("1", duration_s=1.5, units=4, languages=["sanskrit", "english"])
    metrics.record_page("2", duration_s=0.5, units=2, languages=["sanskrit"])
    metrics.record_failure("3", duration_s=2.0)

    summary = metrics.summary()
    assert summary["pages_timed"] == 3
    assert summary["total_duration_s"] == 4.0
    assert summary["max_duration_s"] == 2.0
    assert summary["units_total"] == 6
    assert summary["language_coverage"] == {"english": 1, "sanskrit": 2}
    assert MetricsRecorder.from_dict(metrics.to_dict()) == metrics


def test_event_log_appends_jsonl(tmp_path):
    log = EventLog(tmp_path)
    log.append({"type": "LOG", "payload": {"message": "hi"}})
    log.append({"type": "STATUS", "payload": {"status": "ready"}})

    events = log.read()
    assert [e["type"] for e in events] == ["LOG", "STATUS"]
    assert all("at" in e for e in events)

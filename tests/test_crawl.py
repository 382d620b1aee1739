from __future__ import annotations

import json

import pytest
from fakes import (
    ROBOTS_URL,
    START_URL,
    flat_volume_html,
    section_html,
    section_url,
    serve_flat_text,
)

from polyglot_crawl.controller import OutcomeKind, StepOutcome
from polyglot_crawl.errors import CheckpointError, CrawlError, HandoffError
from polyglot_crawl.sink import JsonFileSink
from polyglot_crawl.sources.polyglotta import extract_section

CIDS = ["101", "102", "103", "104", "105"]


def _document(outcome) -> dict:
    path = outcome.handoff.paths["document"]
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def test_all_targets_captured(make_service, http, channel):
    serve_flat_text(http, CIDS)
    service = make_service()

    outcome = service.start(START_URL)

    assert outcome.kind is OutcomeKind.COMPLETED
    verdict = outcome.verdict
    assert verdict.passed
    assert (verdict.expected, verdict.captured, verdict.failed) == (5, 5, 0)
    assert outcome.handoff.counts_summary() == {"sections": 5, "units": 10}

    doc = _document(outcome)
    assert [c["stable_id"] for c in doc["chapters"]] == [
        f"polyglotta-{cid}" for cid in CIDS
    ]
    assert doc["chapters"][0]["title"] == "Section title 101"
    assert doc["chapters"][0]["group_label"] == "Chapter 1"

    # session is cleared after a successful hand-off
    assert service.session() is None
    for cid in CIDS:
        assert http.fetched(section_url(cid)) == 1

    complete = channel.of("COMPLETE")
    assert complete[-1]["integrity_passed"] is True
    progress = channel.of("PROGRESS")
    assert progress[0] == {"step": 1, "total": 5, "step_name": "Chapter 1: Part 101"}


def test_no_targets_fails_before_navigating(make_service, http, channel):
    http.add(START_URL, flat_volume_html([]))
    service = make_service()

    outcome = service.start(START_URL)

    assert outcome.kind is OutcomeKind.FAILED
    assert "No section URLs found" in outcome.error
    assert http.calls == [START_URL]
    assert service.session() is None
    assert channel.of("ERROR")


def test_max_targets_limits_the_crawl(make_service, http):
    serve_flat_text(http, CIDS)

    outcome = make_service().start(START_URL, max_targets=2)

    assert outcome.verdict.expected == 2
    assert outcome.verdict.passed
    assert http.fetched(section_url("103")) == 0


def test_failing_target_is_recorded_and_crawl_continues(make_service, http, sleeps):
    serve_flat_text(http, CIDS)
    http.add(section_url("102"), "<html><body><p>Loading...</p></body></html>")
    service = make_service()

    outcome = service.start(START_URL)

    assert outcome.kind is OutcomeKind.COMPLETED
    verdict = outcome.verdict
    assert not verdict.passed
    assert verdict.captured == 4
    assert verdict.failed == 1

    doc = _document(outcome)
    integrity = doc["metadata"]["integrity"]
    assert integrity["failed"] == 1
    assert [c["stable_id"] for c in doc["chapters"]] == [
        "polyglotta-101",
        "polyglotta-103",
        "polyglotta-104",
        "polyglotta-105",
    ]
    # three attempts, two backoff waits
    assert 0.01 in sleeps.calls
    assert 0.02 in sleeps.calls

    manifest = json.loads(
        open(outcome.handoff.paths["manifest"], encoding="utf-8").read()
    )["manifest"]
    assert [f["target_page_id"] for f in manifest["failed"]] == ["102"]
    assert "failed after 3 attempts" in manifest["failed"][0]["error"]


def test_every_navigation_waits_two_to_four_seconds(make_service, http, sleeps):
    serve_flat_text(http, CIDS[:2])

    make_service(resume_settle_s=0.0).start(START_URL)

    waits = [s for s in sleeps.calls if s > 0]
    assert len(waits) == 2
    assert all(2.0 <= s <= 4.0 for s in waits)


def test_once_mode_resumes_from_checkpoint_in_fresh_services(make_service, http):
    serve_flat_text(http, CIDS)

    first = make_service(once=True).start(START_URL)
    assert first.kind is OutcomeKind.NAVIGATE
    assert first.url == section_url("101")

    # each call plays the part of a new process after a page load
    second = make_service(once=True).resume()
    assert second.kind is OutcomeKind.NAVIGATE
    assert second.url == section_url("102")

    third = make_service(once=True).resume()
    assert third.url == section_url("103")

    session = make_service().session()
    assert session.current_index == 2
    assert session.manifest.captured_count == 2
    assert make_service().get_manifest().captured_count == 2

    final = make_service().resume()
    assert final.kind is OutcomeKind.COMPLETED
    assert final.verdict.passed
    assert final.verdict.captured == 5
    for cid in CIDS:
        assert http.fetched(section_url(cid)) == 1


def test_resume_with_nothing_stored_is_a_no_op(make_service, http):
    assert make_service().resume() is None
    assert http.calls == []


def test_robots_disallowed_target_is_skipped(make_service, http):
    serve_flat_text(http, CIDS)
    http.add(
        ROBOTS_URL,
        "User-agent: *\n"
        "Disallow: /polyglotta/index.php?page=fulltext&view=fulltext&vid=1&cid=103\n",
    )

    outcome = make_service().start(START_URL)

    assert outcome.kind is OutcomeKind.COMPLETED
    assert outcome.verdict.captured == 4
    assert outcome.verdict.skipped == 1
    assert not outcome.verdict.passed
    assert http.fetched(section_url("103")) == 0


def test_target_that_never_resolves_is_skipped(make_service, http):
    serve_flat_text(http, CIDS[:3])
    http.redirect(section_url("102"), section_url("101"))

    outcome = make_service().start(START_URL)

    assert outcome.verdict.captured == 2
    assert outcome.verdict.skipped == 1
    assert http.fetched(section_url("102")) == 3


def test_handoff_failure_keeps_session_for_retry(make_service, http, tmp_path):
    serve_flat_text(http, CIDS[:2])

    class FlakySink(JsonFileSink):
        failures = 1

        def deliver(self, **kwargs):
            if self.failures:
                self.failures -= 1
                raise HandoffError("downstream refused the package")
            return super().deliver(**kwargs)

    sink = FlakySink(tmp_path / "out")
    failed = make_service(sink=sink).start(START_URL)

    assert failed.kind is OutcomeKind.HANDOFF_FAILED
    assert failed.verdict.passed
    kept = make_service().session()
    assert kept is not None and kept.is_active and kept.finished

    retried = make_service(sink=sink).resume()
    assert retried.kind is OutcomeKind.COMPLETED
    assert retried.handoff.sections_count == 2
    assert make_service().session() is None
    assert http.fetched(section_url("101")) == 1


def test_stop_request_packages_partial_results(make_service, http):
    serve_flat_text(http, CIDS)
    make_service(once=True).start(START_URL)
    make_service(once=True).resume()

    assert make_service().stop() is None
    outcome = make_service().resume()

    assert outcome.kind is OutcomeKind.STOPPED
    assert outcome.handoff.sections_count == 1
    assert outcome.verdict.captured == 1
    assert make_service().session() is None
    assert http.fetched(section_url("102")) == 1


def test_stop_with_finalize_runs_immediately(make_service, http):
    serve_flat_text(http, CIDS)
    make_service(once=True).start(START_URL)
    make_service(once=True).resume()

    outcome = make_service().stop(finalize=True)

    assert outcome.kind is OutcomeKind.STOPPED
    assert outcome.handoff.sections_count == 1


def test_stop_without_a_crawl_does_nothing(make_service):
    service = make_service()
    assert service.stop() is None
    assert not service.stop_event.is_set()


def test_package_retries_handoff_of_a_stopped_crawl(make_service, http, tmp_path):
    serve_flat_text(http, CIDS)
    make_service(once=True).start(START_URL)
    make_service(once=True).resume()

    class BrokenSink:
        def deliver(self, **kwargs):
            raise HandoffError("disk unplugged")

    stopped = make_service(sink=BrokenSink()).stop(finalize=True)
    assert stopped.kind is OutcomeKind.HANDOFF_FAILED
    assert not make_service().session().is_active
    assert make_service().resume() is None

    packaged = make_service().package()
    assert packaged.kind is OutcomeKind.STOPPED
    assert packaged.handoff.sections_count == 1
    assert make_service().session() is None


def test_checkpoint_failure_aborts_navigation(make_service, http, monkeypatch):
    serve_flat_text(http, CIDS)
    make_service(once=True).start(START_URL)

    service = make_service()

    def broken_set(key, session):
        raise CheckpointError("Could not write session: disk full")

    monkeypatch.setattr(service.store, "set", broken_set)
    outcome = service.resume()

    assert outcome.kind is OutcomeKind.FAILED
    assert "disk full" in outcome.error
    assert http.fetched(section_url("102")) == 0


def test_missing_page_mid_crawl_is_navigated_to(make_service, http):
    serve_flat_text(http, CIDS[:2])
    make_service(once=True).start(START_URL)
    # the page load was lost; the loaded page is the start page again
    make_service().browser.navigate(START_URL)

    outcome = make_service().resume()
    assert outcome.kind is OutcomeKind.COMPLETED
    assert outcome.verdict.captured == 2


def test_section_that_loads_late_is_retried(make_service, http):
    serve_flat_text(http, CIDS[:1])
    http.failing.add(section_url("101"))
    service = make_service(once=True)
    assert service.start(START_URL).kind is OutcomeKind.NAVIGATE

    http.failing.clear()
    http.add(section_url("101"), section_html("101"))
    outcome = make_service().resume()

    assert outcome.kind is OutcomeKind.COMPLETED
    assert outcome.verdict.passed


def test_broken_status_channel_does_not_stop_the_crawl(make_service, http):
    serve_flat_text(http, CIDS[:2])

    class BrokenChannel:
        def emit(self, type_, payload):
            raise KeyError(type_)

    service = make_service()
    service.status.channels.append(BrokenChannel())
    outcome = service.start(START_URL)

    assert outcome.kind is OutcomeKind.COMPLETED
    assert outcome.verdict.passed


def _append_result_then_crash(service):
    # result written, checkpoint never reached
    page = service.browser.current()
    service.store.append_unit("polyglotta", extract_section(page))


def test_result_of_a_later_failed_page_is_left_out(make_service, http):
    serve_flat_text(http, CIDS[:2])
    make_service(once=True).start(START_URL)
    _append_result_then_crash(make_service())

    # the page comes back broken on the next load
    http.add(section_url("101"), "<html><body><p>Loading...</p></body></html>")
    make_service().browser.navigate(section_url("101"))
    outcome = make_service().resume()

    assert outcome.kind is OutcomeKind.COMPLETED
    assert (outcome.verdict.captured, outcome.verdict.failed) == (1, 1)
    assert outcome.handoff.sections_count == outcome.verdict.captured
    assert [c["stable_id"] for c in _document(outcome)["chapters"]] == [
        "polyglotta-102"
    ]


def test_stop_packages_only_counted_results(make_service, http):
    serve_flat_text(http, CIDS)
    make_service(once=True).start(START_URL)
    _append_result_then_crash(make_service())

    outcome = make_service().stop(finalize=True)

    assert outcome.kind is OutcomeKind.STOPPED
    assert outcome.verdict.captured == 0
    assert outcome.handoff.sections_count == 0


def test_navigation_without_url_is_an_error(make_service):
    service = make_service()
    with pytest.raises(CrawlError):
        service._drive(StepOutcome(kind=OutcomeKind.NAVIGATE))

from __future__ import annotations

from polyglot_crawl.bootstrap import ResumeBootstrapper
from polyglot_crawl.manifest import IntegrityManifest
from polyglot_crawl.models import Session, TargetPage
from polyglot_crawl.state import SessionStore


def _target() -> TargetPage:
    return TargetPage(
        id="1",
        url="https://example.org/?cid=1",
        display_name="One",
        group_label="Unknown",
        ordinal=0,
    )


def _bootstrapper(store, built):
    def factory(session):
        built.append(session)
        raise AssertionError("controller must not be built")

    return ResumeBootstrapper(
        store=store,
        key="polyglotta",
        controller_factory=factory,
        sleep=lambda s: None,
    )


def test_active_session_without_targets_is_reset(tmp_path):
    store = SessionStore(tmp_path)
    store.set(
        "polyglotta",
        Session(
            is_active=True,
            target_pages=[],
            current_index=0,
            started_at="2024-01-01T00:00:00Z",
            manifest=IntegrityManifest(),
        ),
    )
    built = []

    assert _bootstrapper(store, built).resume() is None
    assert built == []
    assert store.get("polyglotta") is None


def test_unreadable_session_is_reset(tmp_path):
    store = SessionStore(tmp_path)
    path = store.key_dir("polyglotta") / "session.json"
    path.parent.mkdir(parents=True)
    path.write_text("[]", encoding="utf-8")
    built = []

    assert _bootstrapper(store, built).resume() is None
    assert built == []
    assert not path.exists()


def test_inactive_session_is_left_alone(tmp_path):
    store = SessionStore(tmp_path)
    target = _target()
    session = Session.begin([target], metadata={})
    session.is_active = False
    store.set("polyglotta", session)
    built = []

    assert _bootstrapper(store, built).resume() is None
    assert built == []
    assert store.get("polyglotta") == session


def test_active_session_is_handed_to_a_new_controller(tmp_path):
    store = SessionStore(tmp_path)
    target = _target()
    store.set("polyglotta", Session.begin([target], metadata={}))
    seen = []
    waits = []

    class FakeController:
        def __init__(self, session):
            seen.append(session)

        def run(self):
            return "ran"

    bootstrapper = ResumeBootstrapper(
        store=store,
        key="polyglotta",
        controller_factory=FakeController,
        sleep=waits.append,
    )

    assert bootstrapper.resume() == "ran"
    assert [s.current_index for s in seen] == [0]
    assert waits == [2.0]

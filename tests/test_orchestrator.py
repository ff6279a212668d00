import asyncio

from conftest import build_rss, completion_response, feed_transport, llm_transport, make_settings

from digest_agent.errors import PersistenceError, PublishError
from digest_agent.pipeline.factory import build_services
from digest_agent.schemas.run import RunStage
from digest_agent.services.dedup_store import DEDUP_KEY
from digest_agent.services.kv_store import MemoryKeyValueStore
from digest_agent.services.status_store import StatusStore

FEED_A = "https://feeds.example.com/a.xml"
FEED_B = "https://feeds.example.com/b.xml"
FEED_C = "https://feeds.example.com/c.xml"


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.saved: list[dict] = []

    def save(self, title, body, status, author):
        if self.fail:
            raise PublishError("sink unavailable")
        self.saved.append({"title": title, "body": body, "status": status})
        return f"post-{len(self.saved)}"


class RecordingStatusStore(StatusStore):
    def __init__(self, store) -> None:
        super().__init__(store)
        self.stages: list[RunStage] = []

    def save(self, run):
        self.stages.append(run.stage)
        return super().save(run)


class UnwritableDedupStore(MemoryKeyValueStore):
    def set(self, key, value, ttl=None):
        if key == DEDUP_KEY:
            raise PersistenceError("state directory is read-only")
        super().set(key, value, ttl)


class CorruptStatusStore(StatusStore):
    def get(self, run_id):
        raise PersistenceError("Corrupt state file status.json")


def _services(feeds, sink=None, llm=None, store=None, **settings_overrides):
    settings_overrides.setdefault("feed_urls", list(feeds))
    store = store or MemoryKeyValueStore()
    services = build_services(
        make_settings(**settings_overrides),
        store=store,
        sink=sink or RecordingSink(),
        feed_transport=feed_transport(feeds),
        llm_transport=llm or llm_transport(),
    )
    recording = RecordingStatusStore(store)
    services.status = recording
    services.orchestrator.status = recording
    services.orchestrator.deps.status = recording
    return services


def _two_feeds():
    return {
        FEED_A: build_rss("Feed A", [("a-1", "First A", "a" * 500)]),
        FEED_B: build_rss("Feed B", [("b-1", "First B", "b" * 500)]),
    }


def test_full_run_publishes_and_commits() -> None:
    sink = RecordingSink()
    services = _services(_two_feeds(), sink=sink)

    final = asyncio.run(services.orchestrator.run())

    assert final.stage == RunStage.COMPLETE
    assert final.data["record_id"] == "post-1"
    assert final.data["articles"] == 2
    assert sink.saved[0]["title"] == "Daily Digest"
    assert services.dedup.has_seen("a-1")
    assert services.dedup.has_seen("b-1")
    assert services.status.stages == [
        RunStage.PENDING,
        RunStage.FETCHING,
        RunStage.SUMMARIZING,
        RunStage.PUBLISHING,
        RunStage.COMPLETE,
    ]
    assert services.status.get(final.run_id).stage == RunStage.COMPLETE


def test_nothing_new_short_circuits_without_llm_call() -> None:
    requests: list[dict] = []
    sink = RecordingSink()
    services = _services(_two_feeds(), sink=sink, llm=llm_transport(requests=requests))
    services.dedup.mark_seen(["a-1", "b-1"])

    final = asyncio.run(services.orchestrator.run())

    assert final.stage == RunStage.COMPLETE
    assert "No new articles" in final.message
    assert final.data["articles_checked"] == 2
    assert requests == []
    assert sink.saved == []
    assert services.status.stages == [RunStage.PENDING, RunStage.FETCHING, RunStage.COMPLETE]


def test_malformed_summary_fails_without_commit() -> None:
    sink = RecordingSink()
    llm = llm_transport(responder=lambda request: completion_response("definitely not json"))
    services = _services(_two_feeds(), sink=sink, llm=llm)

    final = asyncio.run(services.orchestrator.run())

    assert final.stage == RunStage.ERROR
    assert final.data["failed_stage"] == "summarizing"
    assert sink.saved == []
    assert not services.dedup.has_seen("a-1")
    assert not services.dedup.has_seen("b-1")


def test_publish_failure_leaves_articles_eligible() -> None:
    services = _services(_two_feeds(), sink=RecordingSink(fail=True))

    final = asyncio.run(services.orchestrator.run())

    assert final.stage == RunStage.ERROR
    assert final.data["failed_stage"] == "publishing"
    assert "sink unavailable" in final.message
    assert not services.dedup.has_seen("a-1")

    services.orchestrator.deps.publisher.sink = RecordingSink()
    retry = asyncio.run(services.orchestrator.run())
    assert retry.stage == RunStage.COMPLETE
    assert retry.data["articles"] == 2


def test_seen_articles_excluded_next_run_unless_forced() -> None:
    sink = RecordingSink()
    services = _services(_two_feeds(), sink=sink)

    asyncio.run(services.orchestrator.run())
    second = asyncio.run(services.orchestrator.run())
    forced = asyncio.run(services.orchestrator.run(force_fetch=True))

    assert second.stage == RunStage.COMPLETE
    assert "record_id" not in second.data
    assert forced.data["articles"] == 2
    assert len(sink.saved) == 2


def test_missing_api_key_fails_before_fetching() -> None:
    services = _services(_two_feeds(), openai_api_key="")

    final = asyncio.run(services.orchestrator.run())

    assert final.stage == RunStage.ERROR
    assert "API key" in final.message
    assert services.status.stages == [RunStage.PENDING, RunStage.ERROR]


def test_too_many_feeds_is_a_config_error() -> None:
    urls = [f"https://feeds.example.com/{n}.xml" for n in range(4)]
    services = _services(_two_feeds(), feed_urls=urls)

    final = asyncio.run(services.orchestrator.run())

    assert final.stage == RunStage.ERROR
    assert "At most 3" in final.message


def test_draft_mode_override_is_reported() -> None:
    sink = RecordingSink()
    services = _services(_two_feeds(), sink=sink, draft_mode=True)

    final = asyncio.run(services.orchestrator.run(draft_mode=False))

    assert final.data["status"] == "published"
    assert sink.saved[0]["status"].value == "published"


def test_unused_items_stay_eligible_for_the_next_run() -> None:
    feeds = {
        url: build_rss(f"Feed {name}", [(f"{name}-1", "one", "body one"), (f"{name}-2", "two", "body two")])
        for name, url in zip("abc", [FEED_A, FEED_B, FEED_C])
    }
    sink = RecordingSink()
    services = _services(feeds, sink=sink)

    first = asyncio.run(services.orchestrator.run())

    assert first.stage == RunStage.COMPLETE
    assert first.data["articles"] == 3
    assert all(services.dedup.has_seen(f"{name}-1") for name in "abc")
    assert not any(services.dedup.has_seen(f"{name}-2") for name in "abc")

    second = asyncio.run(services.orchestrator.run())

    assert second.stage == RunStage.COMPLETE
    assert second.data["articles"] == 3
    assert all(services.dedup.has_seen(f"{name}-2") for name in "abc")
    assert len(sink.saved) == 2


def test_commit_failure_after_publish_ends_in_error() -> None:
    sink = RecordingSink()
    services = _services(_two_feeds(), sink=sink, store=UnwritableDedupStore())

    final = asyncio.run(services.orchestrator.run())

    assert final.stage == RunStage.ERROR
    assert final.data["failed_stage"] == "publishing"
    assert "read-only" in final.message
    assert len(sink.saved) == 1
    assert not services.dedup.has_seen("a-1")
    assert services.status.get(final.run_id).stage == RunStage.ERROR


def test_unreadable_status_does_not_escape_run() -> None:
    services = _services(_two_feeds())
    corrupt = CorruptStatusStore(services.store)
    services.orchestrator.status = corrupt
    services.orchestrator.deps.status = corrupt

    final = asyncio.run(services.orchestrator.run(run_id="run-1"))

    assert final.run_id == "run-1"
    assert final.stage == RunStage.ERROR
    assert "Corrupt state file" in final.message

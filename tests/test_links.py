from __future__ import annotations

import datetime as dt

from mneme.documents import KnowledgeSession, SessionLink, load_document, write_document
from mneme.links import SessionResolver
from mneme.paths import MnemePaths

T0 = dt.datetime(2026, 1, 15, 10, 0, tzinfo=dt.UTC)
OLD = "0ld0c0nv-1111-2222-3333-444444444444"
NEW = "new0c0nv-5555-6666-7777-888888888888"


def _link(paths: MnemePaths, conversation: str, master: str) -> None:
    write_document(
        paths.link_path(conversation),
        SessionLink(master_session_id=master, claude_session_id=conversation),
    )


def test_write_link_is_stored_under_short_id(paths: MnemePaths) -> None:
    resolver = SessionResolver(paths)
    resolver.write_link(NEW, "master01")

    assert paths.link_path("new0c0nv").exists()
    assert resolver.resolve(NEW) == "master01"
    assert resolver.knowledge_session_id(NEW) == "master01"
    assert resolver.knowledge_session_id(OLD) == "0ld0c0nv"
    assert resolver.resolve(OLD) == OLD


def test_remove_link(paths: MnemePaths) -> None:
    resolver = SessionResolver(paths)
    resolver.write_link(NEW, "master01")

    assert resolver.remove_link(NEW) is True
    assert resolver.remove_link(NEW) is False
    assert resolver.knowledge_session_id(NEW) == "new0c0nv"


def test_walk_follows_chain_to_master(paths: MnemePaths) -> None:
    _link(paths, "conv0003", "conv0002")
    _link(paths, "conv0002", "conv0001")

    assert SessionResolver(paths).walk_to_master("conv0003") == "conv0001"


def test_cyclic_links_terminate(paths: MnemePaths) -> None:
    _link(paths, "aaaaaaaa", "bbbbbbbb")
    _link(paths, "bbbbbbbb", "aaaaaaaa")

    assert SessionResolver(paths).walk_to_master("aaaaaaaa") in {"aaaaaaaa", "bbbbbbbb"}


def test_self_link_is_its_own_master(paths: MnemePaths) -> None:
    _link(paths, "aaaaaaaa", "aaaaaaaa")

    assert SessionResolver(paths).walk_to_master("aaaaaaaa") == "aaaaaaaa"


def test_walk_stops_at_hop_limit(paths: MnemePaths) -> None:
    for index in range(10):
        _link(paths, f"chain{index:03d}", f"chain{index + 1:03d}")

    assert SessionResolver(paths, max_hops=3).walk_to_master("chain000") == "chain003"


def test_breadcrumb_links_next_conversation_to_compacted_one(paths: MnemePaths) -> None:
    resolver = SessionResolver(paths)
    resolver.write_breadcrumb(OLD, now=T0)

    link = resolver.consume_breadcrumb(NEW, now=T0 + dt.timedelta(seconds=60))

    assert link is not None
    assert link.master_session_id == "0ld0c0nv"
    assert resolver.knowledge_session_id(NEW) == "0ld0c0nv"
    assert not paths.breadcrumb_path.exists()


def test_breadcrumb_joins_existing_chain(paths: MnemePaths) -> None:
    resolver = SessionResolver(paths)
    resolver.write_link(OLD, "master01")
    resolver.write_breadcrumb(OLD, now=T0)

    link = resolver.consume_breadcrumb(NEW, now=T0 + dt.timedelta(seconds=5))

    assert link is not None
    assert link.master_session_id == "master01"


def test_stale_breadcrumb_is_discarded(paths: MnemePaths) -> None:
    resolver = SessionResolver(paths)
    resolver.write_breadcrumb(OLD, now=T0)

    link = resolver.consume_breadcrumb(NEW, now=T0 + dt.timedelta(seconds=301))

    assert link is None
    assert not paths.breadcrumb_path.exists()
    assert not paths.link_path("new0c0nv").exists()


def test_breadcrumb_from_same_conversation_is_discarded(paths: MnemePaths) -> None:
    resolver = SessionResolver(paths)
    resolver.write_breadcrumb(NEW, now=T0)

    assert resolver.consume_breadcrumb(NEW, now=T0) is None
    assert not paths.breadcrumb_path.exists()


def test_corrupt_breadcrumb_is_discarded(paths: MnemePaths) -> None:
    paths.breadcrumb_path.write_text("{not json")

    assert SessionResolver(paths).consume_breadcrumb(NEW) is None
    assert not paths.breadcrumb_path.exists()


def test_missing_breadcrumb_is_a_no_op(paths: MnemePaths) -> None:
    assert SessionResolver(paths).consume_breadcrumb(NEW) is None


def test_work_periods_open_once_and_close(paths: MnemePaths, session_writer) -> None:
    master_path = session_writer("master01")
    resolver = SessionResolver(paths)

    assert resolver.open_work_period("master01", NEW, now="2026-01-15T10:00:00.000Z") is True
    assert resolver.open_work_period("master01", NEW, now="2026-01-15T10:01:00.000Z") is False
    assert resolver.close_work_period("master01", NEW, now="2026-01-15T11:00:00.000Z") is True

    master = load_document(master_path, KnowledgeSession)
    assert master is not None
    assert master.work_periods is not None
    assert len(master.work_periods) == 1
    period = master.work_periods[0]
    assert period.conversation == NEW
    assert period.started_at == "2026-01-15T10:00:00.000Z"
    assert period.ended_at == "2026-01-15T11:00:00.000Z"


def test_work_period_for_missing_master(paths: MnemePaths) -> None:
    assert SessionResolver(paths).open_work_period("nosuch00", NEW) is False

"""Tests for the per-project branch reconciler state machine.

Covers:
- Full fetch + classify cycles and published snapshots
- Atomic publish (no partial relation maps)
- Stale-generation discard
- Fetch and classification failures
- Change-driven polling and the watch loop
- Subscriber callbacks
"""

from __future__ import annotations

import asyncio

import pytest

from projectdeck.reconciler import BranchReconciler, ReconcilerState
from projectdeck.relation import Relation
from projectdeck.service import ServiceError
from projectdeck.testing import FakeInspectionService, FakeProject, InMemoryCommitGraph


async def _drain(rounds: int = 20) -> None:
    """Let every runnable task advance to its next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def graph() -> InMemoryCommitGraph:
    # c0 <- c1 <- c2, d1 diverges from c0
    return InMemoryCommitGraph({"c1": ["c0"], "c2": ["c1"], "d1": ["c0"]})


@pytest.fixture
def service(graph) -> FakeInspectionService:
    return FakeInspectionService(
        {
            "p1": FakeProject(
                local_name="p1",
                branches={"main": "c1", "dev": "c2"},
                references={"main": "c1", "dev": "c0"},
            )
        },
        graph=graph,
    )


@pytest.fixture
def errors():
    return []


@pytest.fixture
def reconciler(service, errors) -> BranchReconciler:
    return BranchReconciler("p1", service, on_error=lambda stage, e: errors.append((stage, e)))


class TestRefresh:
    @pytest.mark.anyio
    async def test_resolves_relations(self, reconciler):
        assert reconciler.state is ReconcilerState.IDLE
        assert dict(reconciler.branch_relations) == {}

        assert await reconciler.refresh() is True

        assert reconciler.state is ReconcilerState.READY
        assert dict(reconciler.branch_relations) == {"main": Relation.SAME, "dev": Relation.AHEAD}
        assert dict(reconciler.branch_commits) == {"main": "c1", "dev": "c2"}
        assert reconciler.generation == 1
        assert reconciler.published_generation == 1

    @pytest.mark.anyio
    async def test_one_classification_per_branch(self, reconciler, service):
        await reconciler.refresh()
        assert service.count("branch_commit_map") == 1
        classified = sorted(call[2] for call in service.calls if call[0] == "classify_relation")
        assert classified == ["dev", "main"]

    @pytest.mark.anyio
    async def test_unchanged_map_is_idempotent(self, reconciler):
        await reconciler.refresh()
        first = dict(reconciler.branch_relations)
        await reconciler.refresh()
        assert dict(reconciler.branch_relations) == first
        assert reconciler.published_generation == 2

    @pytest.mark.anyio
    async def test_published_maps_are_read_only(self, reconciler):
        await reconciler.refresh()
        with pytest.raises(TypeError):
            reconciler.branch_relations["main"] = Relation.NULL  # type: ignore[index]
        with pytest.raises(TypeError):
            reconciler.branch_commits["main"] = "c0"  # type: ignore[index]

    @pytest.mark.anyio
    async def test_old_snapshot_is_not_mutated(self, reconciler, service):
        await reconciler.refresh()
        before = reconciler.branch_relations
        service.projects["p1"].branches = {"main": "c0"}

        await reconciler.refresh()

        assert dict(before) == {"main": Relation.SAME, "dev": Relation.AHEAD}
        assert dict(reconciler.branch_relations) == {"main": Relation.BEHIND}

    @pytest.mark.anyio
    async def test_empty_branch_map_publishes_empty(self, reconciler, service):
        service.projects["p1"].branches = {}
        assert await reconciler.refresh() is True
        assert reconciler.state is ReconcilerState.READY
        assert dict(reconciler.branch_relations) == {}
        assert reconciler.published_generation == 1

    @pytest.mark.anyio
    async def test_states_during_cycle(self, reconciler, service):
        fetch_gate = service.hold("branch_commit_map", "p1")
        task = asyncio.create_task(reconciler.refresh())
        await _drain()
        assert reconciler.state is ReconcilerState.FETCHING_COMMITS

        classify_gate = service.hold("classify_relation", "dev")
        service.release("branch_commit_map", "p1")
        await _drain()
        assert fetch_gate.is_set()
        assert reconciler.state is ReconcilerState.CLASSIFYING_BRANCHES

        classify_gate.set()
        assert await task is True
        assert reconciler.state is ReconcilerState.READY


class TestAtomicPublish:
    @pytest.mark.anyio
    async def test_no_partial_map_before_all_branches_resolve(self, reconciler, service):
        gate = service.hold("classify_relation", "dev")
        task = asyncio.create_task(reconciler.refresh())
        await _drain()

        # "main" has resolved, "dev" has not: nothing is visible yet
        assert service.count("classify_relation") == 2
        assert dict(reconciler.branch_relations) == {}
        assert dict(reconciler.branch_commits) == {}
        assert reconciler.published_generation == 0

        gate.set()
        assert await task is True
        assert set(reconciler.branch_relations) == {"main", "dev"}

    @pytest.mark.anyio
    async def test_previous_generation_stays_visible_while_classifying(self, reconciler, service):
        await reconciler.refresh()
        service.projects["p1"].branches = {"main": "c2", "dev": "c2", "feature": "d1"}
        service.projects["p1"].references["feature"] = "c0"

        gate = service.hold("classify_relation", "feature")
        task = asyncio.create_task(reconciler.refresh())
        await _drain()

        assert dict(reconciler.branch_relations) == {"main": Relation.SAME, "dev": Relation.AHEAD}
        assert reconciler.state is ReconcilerState.CLASSIFYING_BRANCHES

        gate.set()
        await task
        assert dict(reconciler.branch_relations) == {
            "main": Relation.AHEAD,
            "dev": Relation.AHEAD,
            "feature": Relation.AHEAD,
        }
        assert set(reconciler.branch_relations) == set(reconciler.branch_commits)


class TestStaleGeneration:
    @pytest.mark.anyio
    async def test_superseded_cycle_is_discarded(self, graph):
        service = FakeInspectionService(
            {"p1": FakeProject(branches={"old": "c1"}, references={"old": "c1"})},
            graph=graph,
        )
        reconciler = BranchReconciler("p1", service)
        published = []
        reconciler.subscribe(lambda generation, relations: published.append((generation, dict(relations))))

        gate = service.hold("classify_relation", "old")
        first = asyncio.create_task(reconciler.refresh())
        await _drain()

        service.projects["p1"] = FakeProject(branches={"new": "c2"}, references={"new": "c0"})
        assert await reconciler.refresh() is True
        assert dict(reconciler.branch_relations) == {"new": Relation.AHEAD}

        # The first cycle finishes last and must not overwrite the second
        gate.set()
        assert await first is False
        assert dict(reconciler.branch_relations) == {"new": Relation.AHEAD}
        assert dict(reconciler.branch_commits) == {"new": "c2"}
        assert reconciler.published_generation == 2
        assert published == [(2, {"new": Relation.AHEAD})]

    @pytest.mark.anyio
    async def test_superseded_fetch_is_discarded(self, reconciler, service):
        gate = service.hold("branch_commit_map", "p1")
        first = asyncio.create_task(reconciler.refresh())
        await _drain()

        service.release("branch_commit_map", "p1")
        second = asyncio.create_task(reconciler.refresh())
        results = await asyncio.gather(first, second)

        assert gate.is_set()
        assert results == [False, True]
        assert reconciler.published_generation == 2

    @pytest.mark.anyio
    async def test_failed_fetch_of_superseded_cycle_is_ignored(self, reconciler, service, errors):
        service.hold("branch_commit_map", "p1")
        service.fail("branch_commit_map")
        first = asyncio.create_task(reconciler.refresh())
        await _drain()
        second = asyncio.create_task(reconciler.refresh())
        await _drain()

        service.release("branch_commit_map", "p1")
        assert await asyncio.gather(first, second) == [False, False]
        # Only the current generation reports its failure
        assert len(errors) == 1
        assert reconciler.state is ReconcilerState.IDLE


class TestFailures:
    @pytest.mark.anyio
    async def test_fetch_failure_before_first_publish_stays_idle(self, reconciler, service, errors):
        service.fail("branch_commit_map", ServiceError("backend down"))

        assert await reconciler.refresh() is False

        assert reconciler.state is ReconcilerState.IDLE
        assert dict(reconciler.branch_relations) == {}
        assert isinstance(reconciler.last_error, ServiceError)
        assert [stage for stage, _ in errors] == ["branch_commit_map"]

    @pytest.mark.anyio
    async def test_fetch_failure_keeps_last_good_maps(self, reconciler, service, errors):
        await reconciler.refresh()
        good = dict(reconciler.branch_relations)

        service.fail("branch_commit_map")
        assert await reconciler.refresh() is False

        assert reconciler.state is ReconcilerState.READY
        assert dict(reconciler.branch_relations) == good
        assert reconciler.published_generation == 1
        assert len(errors) == 1

    @pytest.mark.anyio
    async def test_recovery_clears_last_error(self, reconciler, service):
        service.fail("branch_commit_map")
        await reconciler.refresh()
        assert reconciler.last_error is not None

        service.recover("branch_commit_map")
        assert await reconciler.refresh() is True
        assert reconciler.last_error is None

    @pytest.mark.anyio
    async def test_fetch_failure_is_logged_as_warning(self, reconciler, service, caplog):
        service.fail("branch_commit_map", ServiceError("backend down"))
        with caplog.at_level("WARNING", logger="projectdeck"):
            await reconciler.refresh()
        assert any("branch_commit_map failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.anyio
    async def test_failed_classification_is_null(self, reconciler, service):
        service.fail("classify_relation", ServiceError("timeout"), key="dev")

        assert await reconciler.refresh() is True

        assert dict(reconciler.branch_relations) == {"main": Relation.SAME, "dev": Relation.NULL}

    @pytest.mark.anyio
    async def test_unknown_commit_is_null(self, reconciler, service):
        service.projects["p1"].branches = {"main": "c1", "ghost": "zz"}
        service.projects["p1"].references["ghost"] = "c0"
        await reconciler.refresh()
        assert reconciler.branch_relations["ghost"] is Relation.NULL


class TestPoll:
    @pytest.mark.anyio
    async def test_poll_before_first_cycle_classifies(self, reconciler, service):
        assert await reconciler.poll() is True
        assert service.count("branch_commit_map") == 1
        assert dict(reconciler.branch_relations) == {"main": Relation.SAME, "dev": Relation.AHEAD}

    @pytest.mark.anyio
    async def test_unchanged_map_does_not_reclassify(self, reconciler, service):
        await reconciler.refresh()
        classified = service.count("classify_relation")

        assert await reconciler.poll() is False

        assert service.count("classify_relation") == classified
        assert reconciler.generation == 1

    @pytest.mark.anyio
    async def test_changed_map_reclassifies_without_second_fetch(self, reconciler, service):
        await reconciler.refresh()
        fetches = service.count("branch_commit_map")
        service.projects["p1"].branches["main"] = "c2"

        assert await reconciler.poll() is True

        assert service.count("branch_commit_map") == fetches + 1
        assert reconciler.branch_relations["main"] is Relation.AHEAD
        assert reconciler.published_generation == 2

    @pytest.mark.anyio
    async def test_poll_failure_is_reported(self, reconciler, service, errors):
        await reconciler.refresh()
        service.fail("branch_commit_map")

        assert await reconciler.poll() is False

        assert reconciler.state is ReconcilerState.READY
        assert [stage for stage, _ in errors] == ["poll"]

    @pytest.mark.anyio
    async def test_poll_failure_overtaken_by_refresh_is_not_reported(self, reconciler, service, errors):
        await reconciler.refresh()
        service.hold("branch_commit_map", "p1")
        service.fail("branch_commit_map", ServiceError("backend down"))
        poll = asyncio.create_task(reconciler.poll())
        await _drain()
        refresh = asyncio.create_task(reconciler.refresh())
        await _drain()

        service.release("branch_commit_map", "p1")

        assert await asyncio.gather(poll, refresh) == [False, False]
        # Only the newer cycle's failure surfaces
        assert [stage for stage, _ in errors] == ["branch_commit_map"]
        assert reconciler.state is ReconcilerState.READY

    @pytest.mark.anyio
    async def test_poll_defers_to_cycle_started_meanwhile(self, reconciler, service):
        await reconciler.refresh()
        service.projects["p1"].branches["main"] = "c2"

        service.hold("branch_commit_map", "p1")
        poll = asyncio.create_task(reconciler.poll())
        await _drain()
        refresh = asyncio.create_task(reconciler.refresh())
        await _drain()
        service.release("branch_commit_map", "p1")

        assert await asyncio.gather(poll, refresh) == [False, True]
        assert reconciler.published_generation == 2

    @pytest.mark.anyio
    async def test_watch_picks_up_changes_until_stopped(self, reconciler, service):
        await reconciler.refresh()
        stop = asyncio.Event()
        task = asyncio.create_task(reconciler.watch(0.01, stop))

        service.projects["p1"].branches["main"] = "c2"
        for _ in range(200):
            if reconciler.branch_commits.get("main") == "c2":
                break
            await asyncio.sleep(0.01)

        stop.set()
        await asyncio.wait_for(task, timeout=1)
        assert reconciler.branch_relations["main"] is Relation.AHEAD


class TestSubscribers:
    @pytest.mark.anyio
    async def test_callback_receives_each_publish(self, reconciler, service):
        seen = []
        reconciler.subscribe(lambda generation, relations: seen.append((generation, dict(relations))))

        await reconciler.refresh()
        service.projects["p1"].branches = {"main": "c1"}
        await reconciler.refresh()

        assert seen == [
            (1, {"main": Relation.SAME, "dev": Relation.AHEAD}),
            (2, {"main": Relation.SAME}),
        ]

    @pytest.mark.anyio
    async def test_unsubscribe(self, reconciler):
        seen = []
        unsubscribe = reconciler.subscribe(lambda generation, relations: seen.append(generation))
        await reconciler.refresh()
        unsubscribe()
        unsubscribe()
        await reconciler.refresh()
        assert seen == [1]

    @pytest.mark.anyio
    async def test_failing_subscriber_does_not_block_others(self, reconciler):
        seen = []

        def broken(generation, relations):
            raise RuntimeError("subscriber bug")

        reconciler.subscribe(broken)
        reconciler.subscribe(lambda generation, relations: seen.append(generation))

        assert await reconciler.refresh() is True
        assert seen == [1]
        assert reconciler.state is ReconcilerState.READY

    @pytest.mark.anyio
    async def test_no_callback_on_failed_fetch(self, reconciler, service):
        seen = []
        reconciler.subscribe(lambda generation, relations: seen.append(generation))
        service.fail("branch_commit_map")
        await reconciler.refresh()
        assert seen == []

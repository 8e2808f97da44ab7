import asyncio

import pytest

from karuna.core.config import Settings
from karuna.core.errors import CommitError, StoreUnavailable
from karuna.core.events import MemoryEventSink
from karuna.repos.inmemory import InMemoryRepo
from karuna.services.matching import run_matching_pass

from conftest import ORIGIN, north_of

pytestmark = pytest.mark.anyio

SETTINGS = Settings(match_radius_m=10_000.0)


async def _report(repo, location=ORIGIN, people=3, **kw):
    return await repo.insert_report({"location": location, "people_in_need": people, **kw})

async def _donation(repo, location, resource="cooked meals", quantity="10 meals", **kw):
    return await repo.insert_donation({
        "resource_type": resource,
        "quantity": quantity,
        "pickup_location": location,
        "pickup_address": "1 Main St",
        "pickup_contact": "555-0100",
        "pickup_time_preference": "evening",
        **kw,
    })


async def test_end_to_end_single_mission(repo):
    a = await _report(repo, people=3)
    b = await _donation(repo, north_of(ORIGIN, 2_000))
    events = MemoryEventSink()

    out = await run_matching_pass(repo, "new_report", a["id"], events=events, settings=SETTINGS)

    assert out["matches_found"] == 1
    assert out["missions_created"] == 1
    m = out["created_missions"][0]
    assert (m["report_id"], m["donation_id"]) == (a["id"], b["id"])
    assert m["status"] == "unassigned"
    assert m["estimated_distance"] == 2.0
    assert m["estimated_duration"] == 34

    assert (await repo.get_report(a["id"]))["status"] == "assigned"
    assert (await repo.get_donation(b["id"]))["status"] == "assigned"
    assert (await repo.get_report(a["id"]))["mission_id"] == m["id"]
    assert (await repo.get_donation(b["id"]))["mission_id"] == m["id"]

    created = events.of_type("match.mission_created")
    assert len(created) == 1
    assert created[0]["data"]["score"] == pytest.approx(115.0)


async def test_radius_cutoff(repo):
    await _report(repo)
    await _donation(repo, north_of(ORIGIN, 10_500))

    out = await run_matching_pass(repo, settings=SETTINGS)

    assert out["matches_found"] == 0
    assert out["missions_created"] == 0
    assert [r["status"] for r in await repo.list_reports()] == ["pending_match"]
    assert [d["status"] for d in await repo.list_donations()] == ["available"]


async def test_incompatible_pair_still_matches_on_distance(repo):
    await _report(repo, people=1)
    await _donation(repo, north_of(ORIGIN, 500), resource="toys", quantity="none")

    out = await run_matching_pass(repo, settings=SETTINGS)
    assert out["missions_created"] == 1


async def test_greedy_prefers_best_score(repo):
    r1 = await _report(repo, location=ORIGIN, people=3)
    r2 = await _report(repo, location=north_of(ORIGIN, 3_000), people=3)
    near = await _donation(repo, north_of(ORIGIN, 2_900))
    far = await _donation(repo, north_of(ORIGIN, 8_000))

    out = await run_matching_pass(repo, settings=SETTINGS)

    assert out["matches_found"] == 4
    pairs = {(m["report_id"], m["donation_id"]) for m in out["created_missions"]}
    # r2/near is the closest pair and is committed first; r1 gets what is left
    assert pairs == {(r2["id"], near["id"]), (r1["id"], far["id"])}


async def test_more_reports_than_donations(repo):
    await _report(repo)
    await _report(repo, location=north_of(ORIGIN, 100))
    await _donation(repo, north_of(ORIGIN, 50))

    out = await run_matching_pass(repo, settings=SETTINGS)

    assert out["missions_created"] == 1
    statuses = sorted(r["status"] for r in await repo.list_reports())
    assert statuses == ["assigned", "pending_match"]


async def test_retrigger_is_idempotent(repo):
    await _report(repo)
    await _donation(repo, north_of(ORIGIN, 1_000))

    first = await run_matching_pass(repo, settings=SETTINGS)
    second = await run_matching_pass(repo, "manual", settings=SETTINGS)

    assert first["missions_created"] == 1
    assert second["matches_found"] == 0
    assert second["missions_created"] == 0
    assert len(await repo.list_missions()) == 1


async def test_trigger_id_does_not_scope_the_pass(repo):
    r1 = await _report(repo)
    r2 = await _report(repo, location=north_of(ORIGIN, 5_000))
    await _donation(repo, north_of(ORIGIN, 100))
    await _donation(repo, north_of(ORIGIN, 5_100))

    out = await run_matching_pass(repo, "new_report", report_id=r1["id"], settings=SETTINGS)

    assert {m["report_id"] for m in out["created_missions"]} == {r1["id"], r2["id"]}


async def test_bad_location_skips_only_that_pair(repo):
    await _report(repo, location=None)
    good = await _report(repo)
    await _donation(repo, north_of(ORIGIN, 1_000))

    out = await run_matching_pass(repo, settings=SETTINGS)

    assert out["matches_found"] == 1
    assert out["created_missions"][0]["report_id"] == good["id"]


class FlakyMissionRepo(InMemoryRepo):
    def __init__(self, fail_for_report):
        super().__init__()
        self.fail_for_report = fail_for_report

    async def insert_mission(self, doc):
        if doc["report_id"] == self.fail_for_report:
            raise CommitError("insert rejected")
        return await super().insert_mission(doc)


async def test_commit_error_leaves_records_available():
    repo = FlakyMissionRepo(fail_for_report=1)
    await _report(repo)                                   # id 1, fails
    await _report(repo, location=north_of(ORIGIN, 4_000))  # id 2
    d = await _donation(repo, north_of(ORIGIN, 100))

    out = await run_matching_pass(repo, settings=SETTINGS)

    # report 1 failed; the donation stays free and goes to report 2
    assert out["missions_created"] == 1
    assert out["created_missions"][0]["report_id"] == 2
    assert (await repo.get_report(1))["status"] == "pending_match"
    assert (await repo.get_donation(d["id"]))["status"] == "assigned"


async def test_commit_error_releases_claims():
    repo = FlakyMissionRepo(fail_for_report=1)
    await _report(repo)
    d = await _donation(repo, north_of(ORIGIN, 100))

    out = await run_matching_pass(repo, settings=SETTINGS)

    assert out["matches_found"] == 1
    assert out["missions_created"] == 0
    assert (await repo.get_report(1))["status"] == "pending_match"
    assert (await repo.get_donation(d["id"]))["status"] == "available"


class DownRepo(InMemoryRepo):
    async def list_reports(self, status=None):
        raise StoreUnavailable("connection refused")


async def test_store_unavailable_aborts_pass():
    repo = DownRepo()
    await _donation(repo, ORIGIN)

    with pytest.raises(StoreUnavailable):
        await run_matching_pass(repo, settings=SETTINGS)
    assert await repo.list_missions() == []


class InterleavingRepo(InMemoryRepo):
    """Yields to the event loop before every write so concurrent passes interleave."""

    async def claim_report(self, *a):
        await asyncio.sleep(0)
        return await super().claim_report(*a)

    async def claim_donation(self, *a):
        await asyncio.sleep(0)
        return await super().claim_donation(*a)

    async def insert_mission(self, doc):
        await asyncio.sleep(0)
        return await super().insert_mission(doc)


async def test_concurrent_passes_never_double_assign():
    repo = InterleavingRepo()
    for i in range(6):
        await _report(repo, location=north_of(ORIGIN, i * 300))
    for i in range(4):
        await _donation(repo, north_of(ORIGIN, i * 300 + 50))

    results = await asyncio.gather(*[run_matching_pass(repo, settings=SETTINGS) for _ in range(3)])

    missions = [m for r in results for m in r["created_missions"]]
    report_ids = [m["report_id"] for m in missions]
    donation_ids = [m["donation_id"] for m in missions]
    assert len(report_ids) == len(set(report_ids))
    assert len(donation_ids) == len(set(donation_ids))
    assert len(await repo.list_missions()) == len(missions)

    # a follow-up pass picks up anything a lost race left behind
    await run_matching_pass(repo, settings=SETTINGS)
    assert len(await repo.list_missions()) == 4

    for r in await repo.list_reports():
        assert (r["status"] == "assigned") == ("mission_id" in r)


class StuckReportReleaseRepo(FlakyMissionRepo):
    """Mission insert fails and so does putting the report back."""

    async def claim_report(self, report_id, expected, new):
        if (expected, new) == ("assigned", "pending_match"):
            raise CommitError("report release rejected")
        return await super().claim_report(report_id, expected, new)


async def test_failed_report_release_still_frees_donation():
    repo = StuckReportReleaseRepo(fail_for_report=1)
    await _report(repo)
    d = await _donation(repo, north_of(ORIGIN, 100))

    out = await run_matching_pass(repo, settings=SETTINGS)

    assert out["missions_created"] == 0
    donation = await repo.get_donation(d["id"])
    assert donation["status"] == "available"
    assert "mission_id" not in donation


class DonationClaimOutageRepo(InMemoryRepo):
    """Store goes away on the second donation claim."""

    def __init__(self):
        super().__init__()
        self.donation_claims = 0

    async def claim_donation(self, donation_id, expected, new):
        if (expected, new) == ("available", "assigned"):
            self.donation_claims += 1
            if self.donation_claims == 2:
                raise StoreUnavailable("connection reset")
        return await super().claim_donation(donation_id, expected, new)


async def test_store_outage_mid_commit_keeps_earlier_missions():
    repo = DonationClaimOutageRepo()
    r1 = await _report(repo)
    r2 = await _report(repo, location=north_of(ORIGIN, 5_000))
    d1 = await _donation(repo, north_of(ORIGIN, 100))
    d2 = await _donation(repo, north_of(ORIGIN, 5_200))

    with pytest.raises(StoreUnavailable):
        await run_matching_pass(repo, settings=SETTINGS)

    missions = await repo.list_missions()
    assert [(m["report_id"], m["donation_id"]) for m in missions] == [(r1["id"], d1["id"])]
    assert (await repo.get_report(r1["id"]))["status"] == "assigned"
    assert (await repo.get_report(r2["id"]))["status"] == "pending_match"
    assert (await repo.get_donation(d2["id"]))["status"] == "available"


class MissionInsertOutageRepo(InMemoryRepo):
    async def insert_mission(self, doc):
        raise StoreUnavailable("primary unreachable")


async def test_store_outage_on_mission_insert_releases_both_claims():
    repo = MissionInsertOutageRepo()
    r = await _report(repo)
    d = await _donation(repo, north_of(ORIGIN, 100))

    with pytest.raises(StoreUnavailable):
        await run_matching_pass(repo, settings=SETTINGS)

    assert (await repo.get_report(r["id"]))["status"] == "pending_match"
    assert (await repo.get_donation(d["id"]))["status"] == "available"

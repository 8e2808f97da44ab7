# karuna/services/matching.py
import logging
import math
import re
from typing import Dict, List, Optional

from karuna.core.config import Settings, get_settings
from karuna.core.errors import CommitError, KarunaError, PairComputationError, StoreUnavailable
from karuna.schemas import MatchCandidate

BASE_SCORE = 100.0
METERS_PER_POINT = 100.0
RESOURCE_BONUS = 20.0
QUANTITY_BONUS = 15.0
BASE_DURATION_MIN = 30
MIN_PER_KM = 2

FOOD_TYPES = ("food", "meals", "cooked meals", "groceries", "water")
ESSENTIAL_TYPES = ("blankets", "clothing", "medicine", "shelter")

_NUMBER = re.compile(r"\d+")

log = logging.getLogger("karuna.matching")


def is_resource_compatible(resource_type: str, people_in_need: int) -> bool:
    rt = (resource_type or "").lower()
    # food is always compatible
    if any(t in rt for t in FOOD_TYPES):
        return True
    # essentials only make sense for groups
    if any(t in rt for t in ESSENTIAL_TYPES) and people_in_need >= 2:
        return True
    return False

def is_quantity_adequate(quantity: str, people_in_need: int) -> bool:
    m = _NUMBER.search(quantity or "")
    if not m:
        return False
    return int(m.group()) >= people_in_need

def compute_score(distance_m: float, resource_type: str, quantity: str, people_in_need: int) -> float:
    score = BASE_SCORE - (distance_m / METERS_PER_POINT)
    if is_resource_compatible(resource_type, people_in_need):
        score += RESOURCE_BONUS
    if is_quantity_adequate(quantity, people_in_need):
        score += QUANTITY_BONUS
    return score

def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))

def mission_estimates(distance_m: float) -> Dict[str, float]:
    km = distance_m / 1000.0
    return {
        "estimated_distance": round(km, 2),
        "estimated_duration": BASE_DURATION_MIN + _round_half_up(km * MIN_PER_KM),
    }

def candidate_sort_key(c: MatchCandidate):
    # best score first; equal scores go to the older report, then older donation
    return (-c.compatibility_score, c.report_id, c.donation_id)


async def score_pair(repo, report: dict, donation: dict, radius_m: float) -> Optional[MatchCandidate]:
    """
    Returns a candidate for the pair, or None when it lies outside the radius.
    Raises PairComputationError when distance or score cannot be computed.
    """
    try:
        distance = float(await repo.distance_m(report.get("location"), donation.get("pickup_location")))
        people = int(report.get("people_in_need") or 0)
    except (TypeError, ValueError, KeyError) as ex:
        raise PairComputationError(report.get("id"), donation.get("id"), str(ex)) from ex

    if distance > radius_m:
        return None

    return MatchCandidate(
        report_id=report["id"],
        donation_id=donation["id"],
        distance=distance,
        compatibility_score=compute_score(
            distance, donation.get("resource_type", ""), donation.get("quantity", ""), people,
        ),
    )

async def find_candidates(repo, reports: List[dict], donations: List[dict], radius_m: float,
                          logger: logging.Logger) -> List[MatchCandidate]:
    cands: List[MatchCandidate] = []
    for r in reports:
        for d in donations:
            try:
                c = await score_pair(repo, r, d, radius_m)
            except PairComputationError as ex:
                logger.warning("skipping %s", ex)
                continue
            if c is not None:
                cands.append(c)
    cands.sort(key=candidate_sort_key)
    return cands


async def _release(repo, c: MatchCandidate, logger: logging.Logger, donation: bool = False):
    # each side is released on its own so one failure cannot strand the other
    try:
        await repo.claim_report(c.report_id, "assigned", "pending_match")
    except KarunaError as ex:
        logger.error("could not release claim on report %s: %s", c.report_id, ex)
    if not donation:
        return
    try:
        await repo.claim_donation(c.donation_id, "assigned", "available")
    except KarunaError as ex:
        logger.error("could not release claim on donation %s: %s", c.donation_id, ex)


async def commit_candidate(repo, c: MatchCandidate, logger: logging.Logger) -> Optional[dict]:
    """
    Claims both records and creates the mission. Returns None when either
    record was already taken by a concurrent pass. StoreUnavailable propagates
    after the claims taken so far are released.
    """
    if not await repo.claim_report(c.report_id, "pending_match", "assigned"):
        logger.info("report %s already claimed, skipping", c.report_id)
        return None

    try:
        got_donation = await repo.claim_donation(c.donation_id, "available", "assigned")
    except (CommitError, StoreUnavailable):
        await _release(repo, c, logger)
        raise
    if not got_donation:
        logger.info("donation %s already claimed, releasing report %s", c.donation_id, c.report_id)
        await _release(repo, c, logger)
        return None

    try:
        mission = await repo.insert_mission({
            "report_id": c.report_id,
            "donation_id": c.donation_id,
            "status": "unassigned",
            **mission_estimates(c.distance),
        })
    except (CommitError, StoreUnavailable):
        await _release(repo, c, logger, donation=True)
        raise

    try:
        await repo.link_mission("report", c.report_id, mission["id"])
        await repo.link_mission("donation", c.donation_id, mission["id"])
    except CommitError as ex:
        # the mission row already carries both ids
        logger.warning("mission %s created but records not linked: %s", mission["id"], ex)
    return mission


async def _emit(events, type_: str, data: dict, logger: logging.Logger):
    if events is None:
        return
    try:
        await events.emit(type_, data)
    except Exception:
        logger.exception("event sink failed for %s", type_)


async def run_matching_pass(
    repo,
    trigger: str = "manual",
    report_id: Optional[int] = None,
    donation_id: Optional[int] = None,
    *,
    logger: Optional[logging.Logger] = None,
    events=None,
    settings: Optional[Settings] = None,
) -> Dict:
    """
    One matching pass over the whole unresolved pool:
      - pair every pending report with every available donation inside the radius
      - rank by score (distance decay + resource and quantity bonuses)
      - greedily commit non-conflicting pairs as missions
    The trigger ids are only logged; they never narrow the pool.
    """
    logger = logger or log
    settings = settings or get_settings()

    logger.info("matching pass triggered by %s (report=%s, donation=%s)", trigger, report_id, donation_id)
    await _emit(events, "match.pass_started",
                {"trigger": trigger, "report_id": report_id, "donation_id": donation_id}, logger)

    reports = await repo.list_reports("pending_match")
    donations = await repo.list_donations("available")
    logger.info("found %d pending reports and %d available donations", len(reports), len(donations))

    cands = await find_candidates(repo, reports, donations, settings.match_radius_m, logger)
    logger.info("found %d potential matches", len(cands))

    created: List[dict] = []
    used_reports = set()
    used_donations = set()

    for c in cands:
        if c.report_id in used_reports or c.donation_id in used_donations:
            continue
        try:
            mission = await commit_candidate(repo, c, logger)
        except CommitError as ex:
            logger.error("could not commit report %s / donation %s: %s", c.report_id, c.donation_id, ex)
            continue
        if mission is None:
            # lost the race for one side; rescan so the other side can still match
            if not await _still_status(repo.get_report, c.report_id, "pending_match"):
                used_reports.add(c.report_id)
            if not await _still_status(repo.get_donation, c.donation_id, "available"):
                used_donations.add(c.donation_id)
            continue

        created.append(mission)
        used_reports.add(c.report_id)
        used_donations.add(c.donation_id)
        logger.info("created mission %s for report %s and donation %s",
                    mission["id"], c.report_id, c.donation_id)
        await _emit(events, "match.mission_created", {
            "mission_id": mission["id"],
            "report_id": c.report_id,
            "donation_id": c.donation_id,
            "score": round(c.compatibility_score, 4),
        }, logger)

    await _emit(events, "match.pass_finished",
                {"trigger": trigger, "matches_found": len(cands), "missions_created": len(created)}, logger)

    return {
        "matches_found": len(cands),
        "missions_created": len(created),
        "created_missions": created,
    }

async def _still_status(getter, record_id: int, status: str) -> bool:
    doc = await getter(record_id)
    return bool(doc) and doc.get("status") == status

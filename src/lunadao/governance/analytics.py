"""
Read-only governance analytics.

Every function here takes snapshots of proposals and votes and returns plain
dictionaries; nothing is mutated, so they can run while the engine keeps
accepting votes.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..errors.exceptions import create_validation_error
from .core import DAY, Proposal, ProposalStatus, Vote

STATISTICS_PERIODS = {"24h": 1, "7d": 7, "30d": 30, "90d": 90}


def overview(proposals: Iterable[Proposal], votes: Iterable[Vote]) -> Dict[str, Any]:
    """Headline statistics."""
    proposals = list(proposals)
    votes = list(votes)
    total_power = sum(v.voting_power for v in votes)
    return {
        "total_proposals": len(proposals),
        "active_proposals": sum(1 for p in proposals if p.status == ProposalStatus.ACTIVE),
        "total_votes": len(votes),
        "total_voting_power": total_power,
        "average_voting_power": total_power / len(votes) if votes else 0,
    }


def proposals_by_type(proposals: Iterable[Proposal]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for proposal in proposals:
        key = proposal.proposal_type.value
        counts[key] = counts.get(key, 0) + 1
    return counts


def proposals_by_status(proposals: Iterable[Proposal]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for proposal in proposals:
        key = proposal.status.value
        counts[key] = counts.get(key, 0) + 1
    return counts


def voting_activity(votes: Iterable[Vote]) -> Dict[str, int]:
    """Votes per UTC day, keyed ``YYYY-MM-DD``."""
    activity: Dict[str, int] = {}
    for vote in votes:
        day = datetime.fromtimestamp(vote.timestamp, tz=timezone.utc).strftime("%Y-%m-%d")
        activity[day] = activity.get(day, 0) + 1
    return dict(sorted(activity.items()))


def top_voters(votes: Iterable[Vote], limit: int = 10) -> List[Dict[str, Any]]:
    """Voters ranked by cumulative voting power across all proposals."""
    voters: Dict[str, Dict[str, int]] = {}
    for vote in votes:
        entry = voters.setdefault(vote.voter_address, {"votes": 0, "total_power": 0})
        entry["votes"] += 1
        entry["total_power"] += vote.voting_power

    ranked = sorted(voters.items(), key=lambda item: (-item[1]["total_power"], item[0]))
    return [{"address": address, **data} for address, data in ranked[:limit]]


def participation_trends(proposals: Iterable[Proposal]) -> List[Dict[str, Any]]:
    return [
        {
            "id": p.proposal_id,
            "title": p.title,
            "total_votes": p.tally.total(),
            "participation": len(p.voters),
            "quorum_reached": p.quorum_reached,
        }
        for p in sorted(proposals, key=lambda p: p.created_at)
    ]


def quorum_analysis(proposals: Iterable[Proposal]) -> Dict[str, Any]:
    proposals = list(proposals)
    total = len(proposals)
    with_quorum = sum(1 for p in proposals if p.quorum_reached)
    return {
        "total_proposals": total,
        "proposals_with_quorum": with_quorum,
        "quorum_rate": (with_quorum / total) * 100 if total else 0.0,
    }


def generate_analytics(
    proposals: Iterable[Proposal], votes: Iterable[Vote], top_voters_limit: int = 10
) -> Dict[str, Any]:
    """Full analytics snapshot."""
    proposals = list(proposals)
    votes = list(votes)
    return {
        "overview": overview(proposals, votes),
        "proposals_by_type": proposals_by_type(proposals),
        "proposals_by_status": proposals_by_status(proposals),
        "voting_activity": voting_activity(votes),
        "top_voters": top_voters(votes, top_voters_limit),
        "participation_trends": participation_trends(proposals),
        "quorum_analysis": quorum_analysis(proposals),
    }


def governance_statistics(
    proposals: Iterable[Proposal], period: str = "30d", now: Optional[float] = None
) -> Dict[str, Any]:
    """
    Statistics over proposals created within ``period`` of ``now``.

    A proposal counts as succeeded once it has ended or been executed with
    quorum and more power for than against. Voting time is averaged in days
    over those ended or executed proposals.
    """
    if period not in STATISTICS_PERIODS:
        raise create_validation_error(
            "period", period, sorted(STATISTICS_PERIODS), f"Unknown statistics period: {period}"
        )
    now = datetime.now(timezone.utc).timestamp() if now is None else now
    start = now - STATISTICS_PERIODS[period] * DAY
    recent = [p for p in proposals if p.created_at >= start]

    completed = [
        p for p in recent if p.status in (ProposalStatus.ENDED, ProposalStatus.EXECUTED)
    ]
    succeeded = sum(1 for p in completed if p.passed())
    executed = sum(1 for p in recent if p.status == ProposalStatus.EXECUTED)

    categories = proposals_by_type(recent)
    ranked = sorted(categories.items(), key=lambda item: (-item[1], item[0]))

    voting_days = [(p.voting_end_time - p.voting_start_time) / DAY for p in completed]
    return {
        "period": period,
        "total_proposals": len(recent),
        "active_proposals": sum(1 for p in recent if p.status == ProposalStatus.ACTIVE),
        "succeeded_proposals": succeeded,
        "executed_proposals": executed,
        "total_votes": sum(len(p.voters) for p in recent),
        "success_rate": (succeeded / len(recent)) * 100 if recent else 0.0,
        "execution_rate": (executed / succeeded) * 100 if succeeded else 0.0,
        "top_categories": [
            {"category": category, "count": count} for category, count in ranked[:5]
        ],
        "average_voting_time": sum(voting_days) / len(voting_days) if voting_days else 0.0,
    }

"""
Transport-free service facade.

``DAOService`` exposes the DAO's logical operations over plain dictionaries.
Every method returns an envelope::

    {"success": True, "data": ...}
    {"success": False, "error": "...", "error_type": "ThresholdError", "status": 400}

Governance errors become failure envelopes (``status`` 404 for unknown
proposals, 400 otherwise); anything else propagates to the host.
"""

import functools
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from ..errors.exceptions import GovernanceError, NotFoundError, create_validation_error
from ..governance.engine import GovernanceEngine

logger = logging.getLogger(__name__)

Envelope = Dict[str, Any]


def _envelope(method: Callable[..., Any]) -> Callable[..., Envelope]:
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs) -> Envelope:
        try:
            data = method(self, *args, **kwargs)
        except GovernanceError as e:
            status = 404 if isinstance(e, NotFoundError) else 400
            logger.info(
                "%s rejected: %s",
                method.__name__,
                e.message,
                extra={"error_type": type(e).__name__, "error_code": e.error_code},
            )
            return {
                "success": False,
                "error": e.message,
                "error_type": type(e).__name__,
                "status": status,
            }
        return {"success": True, "data": data}

    return wrapper


def _payload(data: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise create_validation_error("body", data, "a JSON object")
    return data


class DAOService:
    """Request-level operations of the DAO."""

    def __init__(self, engine: GovernanceEngine):
        self.engine = engine

    @_envelope
    def get_dao_info(self) -> Dict[str, Any]:
        return self.engine.get_dao_info()

    @_envelope
    def create_proposal(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        body = _payload(data)
        proposal = self.engine.create_proposal(
            title=body.get("title"),
            description=body.get("description"),
            proposal_type=body.get("type"),
            actions=body.get("actions"),
            proposer=body.get("proposer"),
            signature=body.get("signature"),
        )
        return proposal.to_dict()

    @_envelope
    def get_proposals(
        self, status: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> Dict[str, Any]:
        return self.engine.list_proposals(status=status, page=page, limit=limit)

    @_envelope
    def get_proposal(self, proposal_id: str) -> Dict[str, Any]:
        return self.engine.get_proposal(proposal_id).to_dict()

    @_envelope
    def get_votes(self, proposal_id: str) -> Dict[str, Any]:
        votes = self.engine.get_votes(proposal_id)
        return {"proposal_id": proposal_id, "votes": [v.to_dict() for v in votes]}

    @_envelope
    def cast_vote(self, proposal_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        body = _payload(data)
        vote = self.engine.cast_vote(
            proposal_id,
            voter=body.get("voter"),
            choice=body.get("choice"),
            signature=body.get("signature"),
        )
        return vote.to_dict()

    @_envelope
    def delegate(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        body = _payload(data)
        delegation = self.engine.delegate_voting_power(
            delegator=body.get("delegator"),
            delegate=body.get("delegate"),
            amount=body.get("amount"),
            duration=body.get("duration"),
        )
        return delegation.to_dict()

    @_envelope
    def revoke_delegation(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        delegator = _payload(data).get("delegator")
        return {"delegator": delegator, "revoked": self.engine.revoke_delegation(delegator)}

    @_envelope
    def execute_proposal(self, proposal_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        body = _payload(data)
        result = self.engine.execute_proposal(
            proposal_id, executor=body.get("executor"), signature=body.get("signature")
        )
        return result.to_dict()

    @_envelope
    def cancel_proposal(self, proposal_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        body = _payload(data)
        return self.engine.cancel_proposal(proposal_id, body.get("requester")).to_dict()

    @_envelope
    def add_comment(self, proposal_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        body = _payload(data)
        comment = self.engine.add_comment(
            proposal_id, author=body.get("author"), message=body.get("message")
        )
        return {"proposal_id": proposal_id, "comment": comment.to_dict()}

    @_envelope
    def get_voting_power(self, address: str) -> Dict[str, Any]:
        return self.engine.get_power_breakdown(address).to_dict()

    @_envelope
    def get_analytics(self) -> Dict[str, Any]:
        return self.engine.generate_analytics()

    @_envelope
    def get_governance_statistics(self, period: str = "30d") -> Dict[str, Any]:
        return self.engine.get_governance_statistics(period)

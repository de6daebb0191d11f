"""
Decision Gate

Pure functions that turn (candidate, verification, rule blockers) into an
AuthoritativeDecision. A Play is only ever created here, and only when the
verifier approved and no rule blocker remains.

    no candidate                       -> NO_SETUP
    not approved (absent / wait / pass) -> BLOCKED (+ arming_failed)
    approved, blockers remain          -> LLM_PASS
    approved, clean                    -> ARMED (with Play)
"""

import logging
from typing import Optional, List

from .models import (
    AuthoritativeDecision, DecisionStatus, Play, PlayMode, PlayStatus,
    SetupCandidate, Verification, VerificationAction,
)

logger = logging.getLogger(__name__)

# Blocker names
NO_ACTIVE_PLAY = "no_active_play"
ARMING_FAILED = "arming_failed"
ENTRY_FILTER = "entry_filter"
CHOP = "chop"
GUARDRAIL = "guardrail"


def grade_for_score(score: float) -> str:
    if score >= 70:
        return "A"
    if score >= 60:
        return "B"
    if score >= 50:
        return "C"
    return "D"


def decision_id(symbol: str, ts: int, candidate: Optional[SetupCandidate]) -> str:
    return f"{symbol}_{ts}_{candidate.id if candidate else 'none'}"


def build_decision(ts: int, symbol: str, expiry_ms: int,
                   candidate: Optional[SetupCandidate] = None,
                   verification: Optional[Verification] = None,
                   blockers: Optional[List[str]] = None,
                   blocker_reasons: Optional[List[str]] = None) -> AuthoritativeDecision:
    blockers = list(blockers or [])
    blocker_reasons = list(blocker_reasons or [])
    base = dict(
        decision_id=decision_id(symbol, ts, candidate),
        timestamp=ts,
        symbol=symbol,
        blocker_reasons=blocker_reasons,
        candidate=candidate,
        verification=verification,
    )

    if candidate is None:
        return AuthoritativeDecision(status=DecisionStatus.NO_SETUP,
                                     blockers=blockers or [NO_ACTIVE_PLAY], **base)

    approved = verification is not None and verification.action.approves
    if not approved and ARMING_FAILED not in blockers:
        blockers.append(ARMING_FAILED)

    if approved and not blockers:
        play = _make_play(ts, candidate, verification, expiry_ms)
        logger.info(
            f"[{symbol}] Play ARMED: {play.direction.value} grade {play.grade} "
            f"({play.mode.value}) stop {play.stop:.2f}"
        )
        return AuthoritativeDecision(status=DecisionStatus.ARMED, blockers=[], play=play, **base)

    status = DecisionStatus.LLM_PASS if approved else DecisionStatus.BLOCKED
    return AuthoritativeDecision(status=status, blockers=blockers, **base)


def _make_play(ts: int, candidate: SetupCandidate, verification: Verification,
               expiry_ms: int) -> Play:
    total = candidate.score.total
    mode = PlayMode.FULL if verification.action is VerificationAction.APPROVE_FULL else PlayMode.SCOUT
    confidence = verification.probability if verification.probability is not None else total
    return Play(
        id=candidate.id,
        symbol=candidate.symbol,
        direction=candidate.direction,
        score=total,
        grade=grade_for_score(total),
        entry_zone=candidate.entry_zone,
        stop=candidate.stop,
        targets=candidate.targets,
        mode=mode,
        confidence=confidence,
        legitimacy=verification.legitimacy,
        follow_through_prob=verification.follow_through_prob,
        action=verification.action.value,
        armed_ts=ts,
        expires_at=ts + expiry_ms,
        trigger_price=candidate.trigger_price,
        status=PlayStatus.ARMED,
        in_entry_zone=False,
        stop_hit=False,
    )


def build_no_entry_decision(ts: int, symbol: str, reason: str,
                            reason_detail: Optional[str] = None,
                            candidate: Optional[SetupCandidate] = None,
                            verification: Optional[Verification] = None) -> AuthoritativeDecision:
    """Explicit BLOCKED record with a single named reason."""
    return AuthoritativeDecision(
        decision_id=decision_id(symbol, ts, candidate),
        timestamp=ts,
        symbol=symbol,
        status=DecisionStatus.BLOCKED,
        blockers=[reason],
        blocker_reasons=[reason_detail] if reason_detail else [],
        candidate=candidate,
        verification=verification,
    )

import uuid
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple

from roadguard.config import config
from roadguard.database import HazardStore
from roadguard.exceptions import StoreError
from roadguard.models import GeoPoint, HazardMatch, HazardRecord, Vote
from roadguard.utils import distance_meters, is_valid_point

logger = logging.getLogger(__name__)


class VerificationStatus(Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REMOVED = "removed"


class VerificationAction(Enum):
    NONE = "none"
    MARKED_VERIFIED = "marked_verified"
    DELETED = "deleted"


@dataclass
class VoteResult:
    accepted: bool
    status: Optional[VerificationStatus] = None
    action: VerificationAction = VerificationAction.NONE
    reason: Optional[str] = None
    hazard: Optional[HazardRecord] = None


class VoteLedger:
    """Which (hazard, user) pairs have voted during this session"""

    def __init__(self):
        self._votes: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def has_voted(self, hazard_id: str, user_id: str) -> bool:
        with self._lock:
            return (hazard_id, user_id) in self._votes

    def record(self, hazard_id: str, user_id: str) -> bool:
        """Record a vote; False if the pair was already present"""
        with self._lock:
            key = (hazard_id, user_id)
            if key in self._votes:
                return False
            self._votes.add(key)
            return True

    def __len__(self):
        with self._lock:
            return len(self._votes)


def nearby_hazards_for_voting(origin: Optional[GeoPoint], hazards: Iterable[HazardRecord],
                              radius_m: float = config.VOTING_RADIUS_METERS) -> List[HazardMatch]:
    """Unverified hazards within radius_m of origin, nearest first"""
    if not is_valid_point(origin):
        return []

    nearby = []
    for hazard in hazards or []:
        if hazard.verified or hazard.id is None or not is_valid_point(hazard.location):
            continue
        distance = distance_meters(origin, hazard.location)
        if distance <= radius_m:
            nearby.append(HazardMatch(hazard=hazard, distance_from_user=distance))

    return sorted(nearby, key=lambda m: m.distance_from_user)


def verification_stats(hazard: HazardRecord) -> dict:
    total_votes = hazard.vote_yes + hazard.vote_no
    percentage = hazard.vote_yes / total_votes * 100 if total_votes > 0 else 0

    return {
        'total_votes': total_votes,
        'yes_votes': hazard.vote_yes,
        'no_votes': hazard.vote_no,
        'verification_percentage': round(percentage),
        'is_verified': hazard.verified,
        'confidence': min(hazard.vote_yes / config.VERIFY_YES_VOTES, 1.0),
    }


class VerificationWorkflow:
    """
    Crowd verification of hazard reports for one traveler session.

    A report is promoted to verified once it collects enough yes votes and is
    deleted once it collects enough no votes. Each user votes at most once per
    hazard; the ledger entry is written before the store is touched and is
    kept even when the store write fails.
    """

    def __init__(self, store: HazardStore, ledger: Optional[VoteLedger] = None,
                 user_id: Optional[str] = None):
        self.store = store
        self.ledger = ledger or VoteLedger()
        self.user_id = user_id or f"user_{uuid.uuid4().hex}"
        self.pending: List[HazardMatch] = []
        self.current: Optional[HazardMatch] = None
        self.skipped: Set[str] = set()
        logger.info(f"Verification session for {self.user_id}")

    def refresh(self, origin: Optional[GeoPoint], hazards: Iterable[HazardRecord]) -> Optional[HazardMatch]:
        """Recompute the hazards awaiting this user's vote; returns the one to prompt for"""
        nearby = nearby_hazards_for_voting(origin, hazards)
        self.pending = [
            m for m in nearby
            if m.hazard.id not in self.skipped and not self.ledger.has_voted(m.hazard.id, self.user_id)
        ]

        if self.current is not None:
            still_pending = [m for m in self.pending if m.hazard.id == self.current.hazard.id]
            # keep prompting for the same hazard, with fresh distance and counts
            self.current = still_pending[0] if still_pending else None
        if self.current is None and self.pending:
            self.current = self.pending[0]
        return self.current

    def _advance(self, hazard_id: str):
        self.pending = [m for m in self.pending if m.hazard.id != hazard_id]
        if self.current is not None and self.current.hazard.id == hazard_id:
            self.current = self.pending[0] if self.pending else None

    def skip(self, hazard_id: str) -> Optional[HazardMatch]:
        self.skipped.add(hazard_id)
        self._advance(hazard_id)
        return self.current

    def submit_vote(self, hazard_id: str, vote: Vote) -> VoteResult:
        if not self.ledger.record(hazard_id, self.user_id):
            logger.info(f"Rejected duplicate vote by {self.user_id} on hazard {hazard_id}")
            return VoteResult(accepted=False, reason="already_voted")

        self._advance(hazard_id)

        try:
            hazard = self.store.apply_vote(hazard_id, vote)
            if hazard is None:
                return VoteResult(accepted=False, reason="not_found")
            return self._process_verification(hazard, vote)
        except StoreError as e:
            logger.error(f"Error submitting vote on hazard {hazard_id}: {e}")
            return VoteResult(accepted=False, reason=f"store_error: {e}")

    def _process_verification(self, hazard: HazardRecord, vote: Vote) -> VoteResult:
        if hazard.verified:
            return VoteResult(accepted=True, status=VerificationStatus.VERIFIED, hazard=hazard)

        if vote == Vote.YES and hazard.vote_yes >= config.VERIFY_YES_VOTES:
            if self.store.mark_verified(hazard.id):
                logger.info(f"Hazard {hazard.id} marked as VERIFIED")
                hazard.verified = True
                return VoteResult(accepted=True, status=VerificationStatus.VERIFIED,
                                  action=VerificationAction.MARKED_VERIFIED, hazard=hazard)
            current = self.store.read(hazard.id)
            if current is None:
                # Removed by no votes between our increment and our write
                return VoteResult(accepted=True, status=VerificationStatus.REMOVED, hazard=hazard)
            if not current.verified:
                raise StoreError(f"Promotion of hazard {hazard.id} was not applied")
            # Another voter promoted it between our increment and our write
            return VoteResult(accepted=True, status=VerificationStatus.VERIFIED, hazard=current)

        if vote == Vote.NO and hazard.vote_no >= config.REMOVE_NO_VOTES:
            if self.store.delete(hazard.id):
                logger.info(f"Hazard {hazard.id} REMOVED due to negative votes")
                return VoteResult(accepted=True, status=VerificationStatus.REMOVED,
                                  action=VerificationAction.DELETED, hazard=hazard)
            self._ensure_deleted(hazard.id)
            return VoteResult(accepted=True, status=VerificationStatus.REMOVED, hazard=hazard)

        if hazard.vote_yes >= config.VERIFY_YES_VOTES or hazard.vote_no >= config.REMOVE_NO_VOTES:
            logger.error(f"Hazard {hazard.id} is past a vote threshold but still pending "
                         f"(yes={hazard.vote_yes}, no={hazard.vote_no})")
        return VoteResult(accepted=True, status=VerificationStatus.PENDING, hazard=hazard)

    def _ensure_deleted(self, hazard_id: str):
        """A delete that reported nothing removed must mean someone else removed it"""
        if self.store.read(hazard_id) is not None:
            raise StoreError(f"Deletion of hazard {hazard_id} was not applied")

    def request_removal(self, hazard_id: str) -> VoteResult:
        """Flag a hazard for community removal; the requester's vote counts as the first"""
        return self.vote_removal(hazard_id)

    def vote_removal(self, hazard_id: str) -> VoteResult:
        if not self.ledger.record(f"removal:{hazard_id}", self.user_id):
            return VoteResult(accepted=False, reason="already_voted")

        try:
            hazard = self.store.add_removal_vote(hazard_id)
            if hazard is None:
                return VoteResult(accepted=False, reason="not_found")
            if hazard.removal_votes >= config.REMOVAL_VOTES_REQUIRED:
                deleted = self.store.delete(hazard_id)
                if deleted:
                    logger.info(f"Hazard {hazard_id} removed after {hazard.removal_votes} removal votes")
                else:
                    self._ensure_deleted(hazard_id)
                return VoteResult(accepted=True, status=VerificationStatus.REMOVED,
                                  action=VerificationAction.DELETED if deleted else VerificationAction.NONE,
                                  hazard=hazard)
            logger.info(f"Removal vote on hazard {hazard_id} ({hazard.removal_votes}/"
                        f"{config.REMOVAL_VOTES_REQUIRED})")
            status = VerificationStatus.VERIFIED if hazard.verified else VerificationStatus.PENDING
            return VoteResult(accepted=True, status=status, hazard=hazard)
        except StoreError as e:
            logger.error(f"Error submitting removal vote on hazard {hazard_id}: {e}")
            return VoteResult(accepted=False, reason=f"store_error: {e}")

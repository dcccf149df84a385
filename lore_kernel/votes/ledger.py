"""
Vote Ledger & Resolver — one vote per participant per decision, tallied by counters.

Behavioral Contract:
- Deduplication is a single atomic set_if_absent on the vote key; there is
  no read-then-write window.
- Tallies are per-option counters plus a total counter; reading a tally
  never iterates votes.
- Votes are enumerable through a counter-indexed voter index.
- A vote written after its decision closed is withdrawn before it is counted.
- Resolution is a pure computation over the tally: highest count wins,
  ties go to the earliest authored option.
"""

from datetime import datetime
from typing import Callable, Iterable, Iterator, Optional

from loguru import logger

from lore_kernel.cache.layer import CacheLayer
from lore_kernel.effects import engine as effects_engine
from lore_kernel.errors import (
    DuplicateVoteError,
    NotFoundError,
    NoVotesCastError,
    ValidationError,
)
from lore_kernel.models.config import VotingConfig
from lore_kernel.models.decision import Decision, DecisionOption, DecisionStatus
from lore_kernel.models.vote import (
    BatchVoteReport,
    OptionBreakdown,
    Vote,
    VoteBreakdown,
    VoteResult,
    VoteTally,
)
from lore_kernel.storage import keys
from lore_kernel.storage.kv import parse_counter
from lore_kernel.storage.records import RecordStore, encode_record

# Participant ids that would collide with the ledger's own keys under votes.<decision>.
RESERVED_PARTICIPANT_IDS = frozenset({"total", "result", "tally", "voters"})


def _percent(part: int, whole: int) -> int:
    """Whole-number percentage, halves rounded up."""
    if whole <= 0:
        return 0
    return int(part * 100 / whole + 0.5)


def community_summary(option: DecisionOption, tally: VoteTally) -> str:
    """One-sentence narration of the outcome, phrased by the winning share."""
    share = _percent(tally.count_for(option.id), tally.total_votes)
    if share >= 70:
        prefix = "The people overwhelmingly chose to"
    elif share >= 60:
        prefix = "The community decided to"
    elif share >= 50:
        prefix = "After much deliberation, the people chose to"
    else:
        prefix = "In a close decision, the community chose to"

    action = option.text.strip().lower()
    for article in ("to ", "the "):
        if action.startswith(article):
            action = action[len(article):]
            break

    summary = f"{prefix} {action}."
    if option.description:
        summary = f"{summary} {option.description}"
    return summary


def validate_participant_id(participant_id: str) -> None:
    if not participant_id or not participant_id.strip():
        raise ValidationError("Participant id must not be empty")
    if "." in participant_id or participant_id in RESERVED_PARTICIPANT_IDS:
        raise ValidationError(f"Participant id {participant_id!r} is not allowed")


class VoteLedger:
    """Decisions, votes and tallies on the key-value store."""

    def __init__(
        self,
        records: RecordStore,
        config: Optional[VotingConfig] = None,
        cache: Optional[CacheLayer] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.records = records
        self.kv = records.kv
        self.config = config or VotingConfig()
        self.cache = cache
        self._clock = clock

    def _drop_cached(self, key: str) -> None:
        if self.cache is not None:
            self.cache.delete(key)

    # --- decisions ---

    def open_decision(self, decision: Decision, make_current: bool = True) -> Decision:
        """Store a new decision and, by default, point the current-decision marker at it."""
        option_ids = decision.option_ids()
        if len(set(option_ids)) != len(option_ids):
            raise ValidationError(f"Decision {decision.id} has duplicate option ids")
        for option in decision.options:
            try:
                effects_engine.validate_effect_limits(option.attribute_effects)
            except ValidationError as exc:
                raise ValidationError(
                    f"Option {option.id} of decision {decision.id}: {exc.message}",
                    errors=exc.errors,
                ) from exc

        if not self.records.create(keys.decision(decision.id), decision):
            raise ValidationError(f"Decision {decision.id} already exists")
        if make_current:
            self.kv.set(keys.CURRENT_DECISION, decision.id)
            self._drop_cached(keys.CACHE_CURRENT_DECISION)
        logger.info("Opened decision {} with {} options", decision.id, len(decision.options))
        return decision

    def get_decision(self, decision_id: str) -> Decision:
        decision = self.records.get(keys.decision(decision_id), Decision)
        if decision is None:
            raise NotFoundError(f"Decision {decision_id} not found", key=keys.decision(decision_id))
        return decision

    def _read_current_decision(self) -> Decision:
        decision_id = self.kv.get(keys.CURRENT_DECISION)
        if decision_id is None:
            raise NotFoundError("No active decision", key=keys.CURRENT_DECISION)
        return self.get_decision(decision_id)

    def get_current_decision(self, use_cache: bool = True) -> Decision:
        if self.cache is None or not use_cache:
            return self._read_current_decision()
        return self.cache.get_or_set(
            keys.CACHE_CURRENT_DECISION,
            self._read_current_decision,
            self.cache.config.current_decision_ttl,
            type_=Decision,
        )

    def _set_status(self, decision_id: str, status: DecisionStatus) -> Decision:
        def mutate(decision: Decision) -> Optional[Decision]:
            if decision.status == status:
                return None
            decision.status = status
            return decision

        decision = self.records.update(keys.decision(decision_id), Decision, mutate)
        self._drop_cached(keys.CACHE_CURRENT_DECISION)
        return decision

    def close_decision(self, decision_id: str) -> Decision:
        """Stop accepting votes. A resolved decision stays resolved."""
        decision = self.get_decision(decision_id)
        if decision.status == DecisionStatus.RESOLVED:
            return decision
        return self._set_status(decision_id, DecisionStatus.CLOSED)

    def mark_resolved(self, decision_id: str) -> Decision:
        return self._set_status(decision_id, DecisionStatus.RESOLVED)

    def clear_current(self, decision_id: str) -> bool:
        """Remove the current-decision marker only if it still points at decision_id."""
        cleared = self.kv.compare_and_delete(keys.CURRENT_DECISION, decision_id)
        self._drop_cached(keys.CACHE_CURRENT_DECISION)
        return cleared

    # --- votes ---

    def submit_vote(
        self,
        participant_id: str,
        decision_id: str,
        option_id: str,
        now: Optional[datetime] = None,
        source: str = "web_interface",
    ) -> Vote:
        validate_participant_id(participant_id)
        now = now or self._clock()
        decision = self.get_decision(decision_id)

        if decision.status != DecisionStatus.OPEN:
            raise ValidationError(f"Decision {decision_id} is {decision.status.value}")
        if decision.expires_at is not None and now >= decision.expires_at:
            raise ValidationError(f"Decision {decision_id} has expired")
        if decision.get_option(option_id) is None:
            raise ValidationError(f"Option {option_id} is not part of decision {decision_id}")

        vote = Vote(
            participant_id=participant_id,
            decision_id=decision_id,
            option_id=option_id,
            timestamp=now,
            source=source,
        )
        vote_key = keys.vote(decision_id, participant_id)
        raw = encode_record(vote)
        if not self.kv.set_if_absent(vote_key, raw):
            raise DuplicateVoteError(participant_id, decision_id)

        # The decision may have closed between the status check and the write.
        status = self.get_decision(decision_id).status
        if status != DecisionStatus.OPEN:
            self.kv.compare_and_delete(vote_key, raw)
            raise ValidationError(f"Decision {decision_id} is {status.value}")

        slot = self.kv.incr_by(keys.voter_count(decision_id))
        self.kv.set(keys.voter_slot(decision_id, slot), participant_id)
        self.kv.incr_by(keys.tally_counter(decision_id, option_id))
        self.kv.incr_by(keys.tally_total(decision_id))
        self._drop_cached(keys.cache_tally(decision_id))

        logger.info("Vote recorded: {} -> {} on {}", participant_id, option_id, decision_id)
        return vote

    def submit_batch(self, votes: Iterable[Vote]) -> BatchVoteReport:
        """Submit many votes; duplicates and invalid votes are counted, not raised."""
        report = BatchVoteReport()
        for vote in votes:
            try:
                self.submit_vote(
                    vote.participant_id,
                    vote.decision_id,
                    vote.option_id,
                    now=vote.timestamp,
                    source=vote.source,
                )
                report.processed += 1
            except DuplicateVoteError:
                report.duplicates += 1
            except (ValidationError, NotFoundError) as exc:
                report.invalid += 1
                logger.warning("Rejected batch vote from {}: {}", vote.participant_id, exc.message)
        logger.info(
            "Batch processed: {} accepted, {} duplicates, {} invalid",
            report.processed, report.duplicates, report.invalid,
        )
        return report

    def get_vote(self, decision_id: str, participant_id: str) -> Optional[Vote]:
        return self.records.get(keys.vote(decision_id, participant_id), Vote)

    def has_voted(self, decision_id: str, participant_id: str) -> bool:
        return self.kv.get(keys.vote(decision_id, participant_id)) is not None

    def voter_count(self, decision_id: str) -> int:
        key = keys.voter_count(decision_id)
        return parse_counter(key, self.kv.get(key))

    def iter_voters(self, decision_id: str) -> Iterator[Vote]:
        """Every recorded vote, in submission order, via the voter index."""
        for slot in range(1, self.voter_count(decision_id) + 1):
            participant_id = self.kv.get(keys.voter_slot(decision_id, slot))
            if participant_id is None:
                logger.warning("Voter slot {} of {} is empty", slot, decision_id)
                continue
            vote = self.get_vote(decision_id, participant_id)
            if vote is None:
                logger.warning("Voter {} indexed on {} has no vote record", participant_id, decision_id)
                continue
            yield vote

    # --- tallies ---

    def _read_tally(self, decision_id: str) -> VoteTally:
        decision = self.get_decision(decision_id)
        option_votes = {}
        for option_id in decision.option_ids():
            key = keys.tally_counter(decision_id, option_id)
            option_votes[option_id] = parse_counter(key, self.kv.get(key))

        total_key = keys.tally_total(decision_id)
        total = parse_counter(total_key, self.kv.get(total_key))
        counted = sum(option_votes.values())
        if total != counted:
            logger.warning(
                "Tally for {} out of step: total {} vs option sum {}", decision_id, total, counted
            )
            total = counted
        return VoteTally(decision_id=decision_id, option_votes=option_votes, total_votes=total)

    def get_tally(self, decision_id: str, use_cache: bool = True) -> VoteTally:
        if self.cache is None or not use_cache:
            return self._read_tally(decision_id)
        return self.cache.get_or_set(
            keys.cache_tally(decision_id),
            lambda: self._read_tally(decision_id),
            self.cache.config.tally_ttl,
            type_=VoteTally,
        )

    def rebuild_tally(self, decision_id: str) -> VoteTally:
        """
        Recount every counter from the voter index. Intended for closed
        decisions; votes submitted during a rebuild may be miscounted.
        """
        decision = self.get_decision(decision_id)
        counts = {option_id: 0 for option_id in decision.option_ids()}
        for vote in self.iter_voters(decision_id):
            if vote.option_id in counts:
                counts[vote.option_id] += 1

        for option_id, count in counts.items():
            self.kv.set(keys.tally_counter(decision_id, option_id), str(count))
        total = sum(counts.values())
        self.kv.set(keys.tally_total(decision_id), str(total))
        self._drop_cached(keys.cache_tally(decision_id))

        logger.info("Rebuilt tally for {}: {} votes", decision_id, total)
        return VoteTally(decision_id=decision_id, option_votes=counts, total_votes=total)

    def vote_breakdown(self, decision_id: str) -> VoteBreakdown:
        tally = self.get_tally(decision_id)
        sources = {}
        for vote in self.iter_voters(decision_id):
            sources[vote.source] = sources.get(vote.source, 0) + 1
        return VoteBreakdown(
            decision_id=decision_id,
            total_votes=tally.total_votes,
            options=[
                OptionBreakdown(
                    option_id=option_id,
                    votes=count,
                    percentage=_percent(count, tally.total_votes),
                )
                for option_id, count in tally.option_votes.items()
            ],
            sources=sources,
        )

    # --- resolution ---

    def resolve(
        self,
        decision_id: str,
        eligible_population: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> VoteResult:
        """
        Pick the winner. Highest count wins; ties go to the lowest option index.
        With zero votes, raises NoVotesCastError unless a fallback option is configured.
        """
        decision = self.get_decision(decision_id)
        tally = self._read_tally(decision_id)
        fallback_used = False

        if tally.total_votes == 0:
            index = self.config.fallback_option_index
            if index is None:
                raise NoVotesCastError(decision_id)
            if not 0 <= index < len(decision.options):
                raise ValidationError(
                    f"Fallback option index {index} is out of range for decision {decision_id}"
                )
            winner = decision.options[index]
            fallback_used = True
            logger.warning("No votes on {}, falling back to option {}", decision_id, winner.id)
        else:
            winner = decision.options[0]
            for option in decision.options[1:]:
                if tally.count_for(option.id) > tally.count_for(winner.id):
                    winner = option

        if eligible_population is None:
            eligible_population = self.config.eligible_population
        if eligible_population <= 0:
            participation = 0.0
        else:
            participation = min(1.0, tally.total_votes / eligible_population)

        result = VoteResult(
            decision_id=decision_id,
            winning_option=winner,
            tally=tally,
            attribute_changes=winner.attribute_effects,
            participation_rate=participation,
            summary=community_summary(winner, tally),
            resolved_at=now or self._clock(),
            fallback_used=fallback_used,
        )
        logger.info(
            "Resolved {}: {} wins with {}/{} votes",
            decision_id, winner.id, tally.count_for(winner.id), tally.total_votes,
        )
        return result

    def record_result(self, result: VoteResult) -> VoteResult:
        """Persist a result once. If one is already stored, that one is returned."""
        if self.records.create(keys.vote_result(result.decision_id), result):
            return result
        return self.get_result(result.decision_id) or result

    def get_result(self, decision_id: str) -> Optional[VoteResult]:
        return self.records.get(keys.vote_result(decision_id), VoteResult)

"""Atropos election by aggregated root votes."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Optional, Protocol

from lachesis.atropos_heap import AtroposDecision, AtroposHeap
from lachesis.event_hash import ZERO_EVENT_HASH, EventHash
from lachesis.store import RootDescriptor
from lachesis.vector_ops import add_vecs, bool_mask, mul_vec, normalize_vec

ForklessCauseFn = Callable[[EventHash, EventHash], bool]
GetFrameRootsFn = Callable[[int], Sequence[RootDescriptor]]


class ValidatorSet(Protocol):
    """The validator group as seen by the election.

    ``sorted_ids`` lists validator ids in index order; index ``i`` has weight
    ``weight_by_idx(i)``.
    """

    sorted_ids: Sequence[int]
    total_weight: int

    def __len__(self) -> int: ...

    def weight_by_idx(self, idx: int) -> int: ...


@dataclass
class _RootVoteContext:
    frame_to_deliver_offset: int
    vote_matrix: list[int] = field(default_factory=list)


_FrameVotes = list[Optional[dict[EventHash, _RootVoteContext]]]


class Election:
    """Decides the Atropos of each frame from the votes of later roots."""

    def __init__(
        self,
        frame_to_deliver: int,
        validators: ValidatorSet,
        forkless_cause: ForklessCauseFn,
        get_frame_roots: GetFrameRootsFn,
    ) -> None:
        self._forkless_cause = forkless_cause
        self._get_frame_roots = get_frame_roots
        self.reset_epoch(frame_to_deliver, validators)

    def reset_epoch(self, frame_to_deliver: int, validators: ValidatorSet) -> None:
        """Forget every vote and start electing from ``frame_to_deliver``."""
        self._delivery_buffer = AtroposHeap()
        self.frame_to_deliver = frame_to_deliver
        self.validators = validators
        self._vote: dict[int, _FrameVotes] = {}
        self._count = len(validators)
        self._idx = {vid: i for i, vid in enumerate(validators.sorted_ids)}

    def vote_and_aggregate(
        self, frame: int, validator_id: int, root_hash: EventHash
    ) -> list[AtroposDecision]:
        """Register a root's vote and return the Atropoi that are now deliverable."""
        validator_idx = self._idx.get(validator_id, 0)
        self._prepare_new_elector_root(frame, validator_idx, root_hash)
        if frame <= self.frame_to_deliver:
            return []

        aggregation = [0] * ((frame - self.frame_to_deliver - 1) * self._count)
        direct_votes = [-1] * self._count
        observed_weight = 0
        previous = self._vote.get(frame - 1)

        for observed in self._observed_roots(root_hash, frame - 1):
            observed_idx = self._idx.get(observed.validator_id, 0)
            direct_votes[observed_idx] = 1
            observed_weight += self.validators.weight_by_idx(observed_idx)

            contexts = previous[observed_idx] if previous is not None else None
            context = contexts.get(observed.root_hash) if contexts else None
            if context is not None and aggregation:
                offset = (self.frame_to_deliver - context.frame_to_deliver_offset) * self._count
                aggregation = add_vecs(aggregation, context.vote_matrix[offset:])

        self._decide(frame, aggregation, observed_weight)

        matrix = normalize_vec(aggregation) + direct_votes
        weight = self.validators.weight_by_idx(validator_idx)
        self._vote[frame][validator_idx][root_hash].vote_matrix = mul_vec(matrix, weight)

        atropoi = self._delivery_buffer.delivery_ready(self.frame_to_deliver)
        self.frame_to_deliver += len(atropoi)
        return atropoi

    def _decide(self, aggregating_frame: int, aggregation: list[int], observed_weight: int) -> None:
        # quorum = ceil((4 * total weight - 3 * observed weight) / 3)
        q0 = 4 * self.validators.total_weight - 3 * observed_weight
        quorum = (q0 + 2) // 3
        yes = bool_mask(aggregation, lambda x: x >= quorum)
        no = bool_mask(aggregation, lambda x: x <= -quorum)

        for frame in list(self._vote):
            if frame < self.frame_to_deliver or frame >= aggregating_frame - 1:
                continue
            for candidate in self.validators.sorted_ids:
                offset = (frame - self.frame_to_deliver) * self._count + self._idx[candidate]
                if yes[offset]:
                    atropos = self._elect(frame, candidate)
                    self._delivery_buffer.push(AtroposDecision(frame, atropos))
                    del self._vote[frame]
                    break
                if not no[offset]:
                    break

    def _elect(self, frame: int, candidate: int) -> EventHash:
        """Pick the Atropos among the candidate's roots, resolving forks if needed."""
        candidates = self._vote[frame][self._idx[candidate]] or {}
        atropos = ZERO_EVENT_HASH
        for root_hash in candidates:
            atropos = root_hash
        # Only one root of a (frame, validator) pair can be forkless caused,
        # so the first one voted for by a frame + 1 root wins.
        if len(candidates) > 1:
            judges = self._get_frame_roots(frame + 1)
            for root_hash in candidates:
                if any(self._forkless_cause(judge.root_hash, root_hash) for judge in judges):
                    return root_hash
        return atropos

    def _observed_roots(self, root: EventHash, frame: int) -> list[RootDescriptor]:
        return [r for r in self._get_frame_roots(frame) if self._forkless_cause(root, r.root_hash)]

    def _prepare_new_elector_root(self, frame: int, validator_idx: int, root: EventHash) -> None:
        frame_votes = self._vote.setdefault(frame, [None] * self._count)
        if frame_votes[validator_idx] is None:
            frame_votes[validator_idx] = {}
        frame_votes[validator_idx][root] = _RootVoteContext(self.frame_to_deliver)
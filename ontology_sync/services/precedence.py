"""Precedence rules deciding whether a writer's proposal may auto-apply."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from ontology_sync.config import Settings, SourcePolicySettings, get_settings

PrecedenceDecision = Literal["auto_apply", "queue_for_review", "reject_unauthorized"]


@dataclass(slots=True, frozen=True)
class SourcePolicy:
    """What one writer class is allowed to do under the deployment's policy."""

    can_propose: bool = True
    can_review: bool = False
    auto_apply: bool = False
    auto_apply_change_types: frozenset[str] | None = None
    min_auto_apply_confidence: float | None = None

    @classmethod
    def from_settings(cls, value: SourcePolicySettings) -> SourcePolicy:
        change_types = value.auto_apply_change_types
        return cls(
            can_propose=value.can_propose,
            can_review=value.can_review,
            auto_apply=value.auto_apply,
            auto_apply_change_types=frozenset(change_types) if change_types is not None else None,
            min_auto_apply_confidence=value.min_auto_apply_confidence,
        )


@dataclass(slots=True)
class PrecedencePolicy:
    """Rank table plus per-source policy consulted for every proposal and review.

    Ranks are compared strictly: a proposal auto-applies only when its source
    outranks whoever last set the target field. A field that has never been
    set (no source tag) is a baseline every known source outranks.
    """

    ranks: dict[str, int]
    sources: dict[str, SourcePolicy] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PrecedencePolicy:
        settings = settings or get_settings()
        return cls(
            ranks=dict(settings.source_ranks),
            sources={
                name: SourcePolicy.from_settings(value) for name, value in settings.source_policies.items()
            },
        )

    def rank(self, source: str | None) -> int | None:
        if source is None:
            return None
        return self.ranks.get(source)

    def policy_for(self, source: str) -> SourcePolicy:
        return self.sources.get(source, SourcePolicy())

    def decide(
        self,
        source: str,
        target_source: str | None,
        *,
        change_type: str,
        confidence: float | None = None,
    ) -> PrecedenceDecision:
        """Return what the caller should do with a proposal. Never mutates state."""

        source_rank = self.rank(source)
        policy = self.policy_for(source)
        if source_rank is None or not policy.can_propose:
            return "reject_unauthorized"

        target_rank = self._target_rank(target_source)
        if target_rank is not None and source_rank <= target_rank:
            return "queue_for_review"

        if not policy.auto_apply:
            return "queue_for_review"
        if policy.auto_apply_change_types is not None and change_type not in policy.auto_apply_change_types:
            return "queue_for_review"
        if policy.min_auto_apply_confidence is not None:
            if confidence is None or confidence < policy.min_auto_apply_confidence:
                return "queue_for_review"
        return "auto_apply"

    def can_review(self, actor_source: str, target_source: str | None) -> bool:
        """Reviewers may only decide on fields last set by an equal or lower class."""

        actor_rank = self.rank(actor_source)
        if actor_rank is None or not self.policy_for(actor_source).can_review:
            return False
        target_rank = self._target_rank(target_source)
        return target_rank is None or actor_rank >= target_rank

    def _target_rank(self, target_source: str | None) -> int | None:
        if target_source is None:
            return None
        # An unrecognised tag on stored metadata is treated as the highest authority.
        return self.ranks.get(target_source, max(self.ranks.values(), default=0) + 1)


def highest_source(policy: PrecedencePolicy, sources: list[str]) -> str | None:
    """Return the highest-ranked source tag among ``sources``."""

    best: str | None = None
    best_rank = -1
    for source in sources:
        rank = policy.ranks.get(source, max(policy.ranks.values(), default=0) + 1)
        if rank > best_rank:
            best, best_rank = source, rank
    return best

"""Pure feed ranking functions — no I/O, no framework imports.

score = recency + engagement

  recency    = max(0, ceiling - age_hours)         linear decay, 0 after `ceiling` hours
  engagement = likes*3 + comments*5 + shares*10    default multipliers

The multipliers and the ceiling come from RankingWeights, which the service
layer builds from Settings so that the policy can be tuned per deployment.
All callers that omit the weights= argument use DEFAULT_RANKING_WEIGHTS.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from app.feed.schemas import PostSummary

_SECONDS_PER_HOUR = 3600.0


@dataclass(frozen=True)
class RankingWeights:
    like: float = 3.0
    comment: float = 5.0
    share: float = 10.0
    recency_ceiling_hours: float = 100.0

    @classmethod
    def from_settings(cls, settings) -> "RankingWeights":
        return cls(
            like=settings.ranking_like_weight,
            comment=settings.ranking_comment_weight,
            share=settings.ranking_share_weight,
            recency_ceiling_hours=settings.ranking_recency_ceiling_hours,
        )


DEFAULT_RANKING_WEIGHTS = RankingWeights()


def as_utc(dt: datetime) -> datetime:
    """Timestamps without an offset are taken to be UTC."""
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def age_hours(created_at: datetime, as_of: datetime) -> float:
    return (as_utc(as_of) - as_utc(created_at)).total_seconds() / _SECONDS_PER_HOUR


def score_recency(
    created_at: datetime,
    as_of: datetime,
    weights: RankingWeights = DEFAULT_RANKING_WEIGHTS,
) -> float:
    """Linear decay from `ceiling` (brand new) to 0.0; never negative.

    A post dated in the future scores above the ceiling, same as the
    unclamped formula.
    """
    return max(0.0, weights.recency_ceiling_hours - age_hours(created_at, as_of))


def score_engagement(
    likes: int,
    comments: int,
    shares: int,
    weights: RankingWeights = DEFAULT_RANKING_WEIGHTS,
) -> float:
    return likes * weights.like + comments * weights.comment + shares * weights.share


def score_post(
    post: PostSummary,
    as_of: datetime,
    weights: RankingWeights = DEFAULT_RANKING_WEIGHTS,
) -> float:
    return score_recency(post.created_at, as_of, weights) + score_engagement(
        post.likes_count, post.comments_count, post.shares_count, weights
    )


def _sort_key(post: PostSummary) -> tuple[float, float, str]:
    # score desc, created_at desc, post_id asc
    return (-post.score, -as_utc(post.created_at).timestamp(), post.post_id)


def rank(
    candidates: list[PostSummary],
    as_of: datetime,
    weights: RankingWeights = DEFAULT_RANKING_WEIGHTS,
) -> list[PostSummary]:
    """Return scored copies of `candidates`, best first.

    Equal inputs always produce the same order; the inputs are not mutated.
    """
    scored = [
        post.model_copy(update={"score": score_post(post, as_of, weights)})
        for post in candidates
    ]
    return sorted(scored, key=_sort_key)

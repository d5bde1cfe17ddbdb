"""Decision engine — compare a live feature vector against a baseline.

The distance is the root-mean-square of per-feature standardized
deviations::

    d = sqrt(mean_i((x_i - mu_i)^2 / (sigma_i^2 + eps)))

and is mapped to a confidence with ``1 / (1 + d)``, so ``d = 0`` gives
confidence 1 and confidence falls strictly as the distance grows.
"""

from __future__ import annotations

import math

import numpy as np
import structlog

from gait_auth.errors import FeatureMismatchError, NoBaselineError
from gait_auth.models import (
    AuthenticationDecision,
    BaselineProfile,
    GaitFeatureVector,
    RejectionReason,
)

logger = structlog.get_logger(__name__)

DEFAULT_EPSILON = 1e-3


def standardized_distance(
    live: GaitFeatureVector,
    baseline: BaselineProfile,
    *,
    epsilon: float = DEFAULT_EPSILON,
) -> float:
    """RMS of standardized deviations of *live* from *baseline*.

    Raises :class:`FeatureMismatchError` when the vector was extracted with
    a different feature layout or configuration than the baseline.
    """
    if epsilon <= 0:
        raise ValueError("epsilon must be positive")
    if (
        live.names != baseline.feature_names
        or live.window_size != baseline.window_size
        or live.sampling_rate_hz != baseline.sampling_rate_hz
    ):
        raise FeatureMismatchError(
            "live features and baseline were extracted with different configurations"
        )

    x = live.to_array()
    mu = np.asarray(baseline.mean, dtype=np.float64)
    sigma = np.asarray(baseline.spread, dtype=np.float64)
    d2 = float(np.mean((x - mu) ** 2 / (sigma ** 2 + epsilon)))
    return math.sqrt(d2)


def confidence_from_distance(distance: float) -> float:
    """Map a non-negative distance onto ``(0, 1]``."""
    if distance < 0 or math.isnan(distance):
        raise ValueError(f"invalid distance: {distance}")
    return 1.0 / (1.0 + distance)


def decide(
    live: GaitFeatureVector,
    baseline: BaselineProfile | None,
    threshold: float,
    *,
    epsilon: float = DEFAULT_EPSILON,
    attempt: int = 1,
    user_id: str | None = None,
) -> AuthenticationDecision:
    """Render an authenticate / reject decision.

    Pure: no retries, no side effects beyond a debug log line.

    Raises
    ------
    NoBaselineError
        *baseline* is ``None``.
    FeatureMismatchError
        The vectors are not comparable.
    """
    if baseline is None:
        raise NoBaselineError("no baseline available for this user")

    distance = standardized_distance(live, baseline, epsilon=epsilon)
    confidence = confidence_from_distance(distance)
    authenticated = confidence >= threshold

    logger.debug(
        "decision.evaluated",
        user=baseline.user_id,
        distance=round(distance, 4),
        confidence=round(confidence, 4),
        authenticated=authenticated,
    )
    return AuthenticationDecision(
        user_id=user_id or baseline.user_id,
        baseline_id=baseline.id,
        features=live,
        distance=distance,
        confidence=confidence,
        threshold=threshold,
        authenticated=authenticated,
        reason=None if authenticated else RejectionReason.LOW_CONFIDENCE,
        attempt=attempt,
    )


def rejected(
    user_id: str,
    reason: RejectionReason,
    threshold: float,
    *,
    attempt: int = 1,
    baseline_id: str | None = None,
) -> AuthenticationDecision:
    """A failed decision that never reached the distance computation."""
    return AuthenticationDecision(
        user_id=user_id,
        baseline_id=baseline_id,
        confidence=0.0,
        threshold=threshold,
        authenticated=False,
        reason=reason,
        attempt=attempt,
    )

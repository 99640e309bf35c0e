# src/rigloc/system/params.py
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from .errors import RigConfigurationError


class RobustEstimator(str, Enum):
    ACRANSAC = "acransac"
    LORANSAC = "loransac"

    @classmethod
    def parse(cls, name: str) -> "RobustEstimator":
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            raise RigConfigurationError(
                f"Unknown robust estimator {name!r}: only "
                f"{cls.ACRANSAC.value} and {cls.LORANSAC.value} are supported."
            ) from None


LORANSAC_MIN_THRESHOLD = 1e-6


def check_robust_estimator(estimator: RobustEstimator | str, value: float) -> float:
    """
    Validate an error threshold for the given estimator and return the value to use.

    ACRANSAC: 0 means "estimate the threshold during RANSAC" and becomes +inf.
    LORANSAC: the threshold must be strictly positive.
    """
    e = estimator if isinstance(estimator, RobustEstimator) else RobustEstimator.parse(estimator)
    value = float(value)
    if value < 0.0:
        raise RigConfigurationError(f"Error thresholds cannot be negative, got {value}")
    if e is RobustEstimator.ACRANSAC and value == 0.0:
        return math.inf
    if e is RobustEstimator.LORANSAC and value <= LORANSAC_MIN_THRESHOLD:
        raise RigConfigurationError(
            f"errorMax and matchingError cannot be 0 with {e.value} estimator."
        )
    return value


@dataclass(frozen=True)
class LocalizerParams:
    """Estimation parameters shared by every localization call of a run."""
    matching_estimator: RobustEstimator = RobustEstimator.ACRANSAC
    resection_estimator: RobustEstimator = RobustEstimator.ACRANSAC
    reprojection_error: float = 4.0   # px, inf = adaptive
    matching_error: float = 4.0       # px, inf = adaptive
    angular_threshold: float = math.radians(0.1)
    refine_intrinsics: bool = False
    use_rig_naive: bool = False

    @classmethod
    def build(
        cls,
        *,
        matching_estimator: str = "acransac",
        resection_estimator: str = "acransac",
        reprojection_error: float = 4.0,
        matching_error: float = 4.0,
        angular_threshold_deg: float = 0.1,
        refine_intrinsics: bool = False,
        use_rig_naive: bool = False,
    ) -> "LocalizerParams":
        me = RobustEstimator.parse(matching_estimator)
        re = RobustEstimator.parse(resection_estimator)
        if angular_threshold_deg <= 0.0:
            raise RigConfigurationError(
                f"angularThreshold must be positive, got {angular_threshold_deg}"
            )
        return cls(
            matching_estimator=me,
            resection_estimator=re,
            reprojection_error=check_robust_estimator(re, reprojection_error),
            matching_error=check_robust_estimator(me, matching_error),
            angular_threshold=math.radians(float(angular_threshold_deg)),
            refine_intrinsics=bool(refine_intrinsics),
            use_rig_naive=bool(use_rig_naive),
        )

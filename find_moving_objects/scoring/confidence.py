from __future__ import annotations

from dataclasses import dataclass

from find_moving_objects.fusion.frame_resolver import TransformFlags
from find_moving_objects.utils.types import BankArgument

# Downward parabola over the window duration dt, zero at root_1 and root_2.
A = -10.0 / 3.0
DEFAULT_ROOT_1 = 0.35
DEFAULT_ROOT_2 = 0.65
TRANSFORM_BONUS = 0.5
WIDTH_WEIGHT = -5.0


def calculate_confidence(
    new_width: float,
    old_width: float,
    arg: BankArgument,
    dt: float,
    transforms: TransformFlags,
    root_1: float = DEFAULT_ROOT_1,
    root_2: float = DEFAULT_ROOT_2,
) -> float:
    """
    ema_alpha * (base_confidence
                 + 0.5 if all six lookups succeeded
                 + A * (dt - root_1) * (dt - root_2)
                 - 5 * |new_width - old_width|)
    """
    return arg.ema_alpha * (
        arg.base_confidence
        + (TRANSFORM_BONUS if transforms.all_succeeded else 0.0)
        + A * (dt - root_1) * (dt - root_2)
        + WIDTH_WEIGHT * abs(new_width - old_width)
    )


@dataclass(frozen=True)
class ConfidenceScorer:
    """Per-bank parabola roots; replaced once when the bank size is calibrated."""

    root_1: float = DEFAULT_ROOT_1
    root_2: float = DEFAULT_ROOT_2

    @classmethod
    def from_target_seconds(cls, target_seconds: float) -> "ConfidenceScorer":
        return cls(root_1=target_seconds * 0.6, root_2=target_seconds * 1.4)

    @property
    def ideal_dt(self) -> float:
        return 0.5 * (self.root_1 + self.root_2)

    def score(self, new_width: float, old_width: float, arg: BankArgument, dt: float, transforms: TransformFlags) -> float:
        return calculate_confidence(new_width, old_width, arg, dt, transforms, self.root_1, self.root_2)

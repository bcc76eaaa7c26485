"""Per-month allocation policies.

A policy receives the effort still to place and a per-month limit, and returns
how much each month takes. It never exceeds a limit and places
``min(total, sum(limits))`` overall; overflow and redistribution are handled
by the engine, so policies can be swapped without touching either.
"""

from __future__ import annotations

import math
from typing import Callable, Dict, Iterable, List, Sequence

EPSILON = 1e-9


# Named effort shapes as a weight per month for a range of n months.
CURVE_PRESETS: Dict[str, Callable[[int], List[float]]] = {
    "ramp_down": lambda n: [float(n - idx) for idx in range(n)],
    "ramp_up": lambda n: [float(idx + 1) for idx in range(n)],
    "bell": lambda n: [float(min(idx + 1, n - idx)) for idx in range(n)],
}


def normalize_weights(seq: Iterable[float]) -> List[float]:
    weights = [float(x) for x in seq]
    if not weights:
        raise ValueError("curve must contain at least one weight")
    if any(w < 0 for w in weights):
        raise ValueError("curve weights must be non-negative")
    total = sum(weights)
    if total <= 0:
        raise ValueError("curve weights must sum to a positive number")
    return [w / total for w in weights]


def curve_weights(curve: object, months: int) -> List[float]:
    """Share of the effort each of ``months`` months should take.

    Custom weight lists of another length are stretched by giving each month
    the weight of the slot it falls in.
    """
    if months <= 0:
        raise ValueError("month count must be positive")
    if isinstance(curve, str):
        key = curve.lower()
        if key in ("even", "uniform"):
            return [1.0 / months] * months
        if key not in CURVE_PRESETS:
            raise ValueError(f"unsupported curve keyword '{curve}'")
        return normalize_weights(CURVE_PRESETS[key](months))
    if isinstance(curve, Sequence):
        base = list(curve)
        if not base:
            raise ValueError("curve must contain at least one weight")
        return normalize_weights(base[idx * len(base) // months] for idx in range(months))
    raise TypeError("curve must be a weight sequence or a preset name")


class AllocationPolicy:
    name = "base"

    def allocate(self, total: float, limits: Sequence[float]) -> List[float]:
        raise NotImplementedError


class FrontloadPolicy(AllocationPolicy):
    """Fill each month up to its limit, earliest month first."""

    name = "frontload"

    def allocate(self, total: float, limits: Sequence[float]) -> List[float]:
        return _greedy(total, limits, range(len(limits)))


class BackloadPolicy(AllocationPolicy):
    """Fill each month up to its limit, latest month first."""

    name = "backload"

    def allocate(self, total: float, limits: Sequence[float]) -> List[float]:
        return _greedy(total, limits, reversed(range(len(limits))))


class CurvePolicy(AllocationPolicy):
    """Spread effort along a weight curve, spilling capped shares to the months short of their target."""

    def __init__(self, curve: object = "even") -> None:
        self.curve = curve
        self.name = curve if isinstance(curve, str) else "curve"

    def allocate(self, total: float, limits: Sequence[float]) -> List[float]:
        if not limits:
            return []
        weights = curve_weights(self.curve, len(limits))
        whole = float(total).is_integer()
        targets = [total * weight for weight in weights]
        amounts: List[float] = []
        for target, limit in zip(targets, limits):
            share = math.floor(target + EPSILON) if whole else target
            amounts.append(max(0, min(limit, share)))
        leftover = total - sum(amounts)
        # months furthest below their target absorb the remainder first
        order = sorted(range(len(limits)), key=lambda idx: (-(targets[idx] - amounts[idx]), idx))
        for idx in order:
            if leftover <= EPSILON:
                break
            give = min(leftover, limits[idx] - amounts[idx])
            if give > 0:
                amounts[idx] += give
                leftover -= give
        return amounts


def _greedy(total: float, limits: Sequence[float], order) -> List[float]:
    amounts: List[float] = [0] * len(limits)
    remaining = total
    for idx in order:
        if remaining <= EPSILON:
            break
        take = min(remaining, max(0, limits[idx]))
        amounts[idx] = take
        remaining -= take
    return amounts


def resolve_policy(spec: object) -> AllocationPolicy:
    if isinstance(spec, AllocationPolicy):
        return spec
    if isinstance(spec, str):
        key = spec.lower()
        if key == FrontloadPolicy.name:
            return FrontloadPolicy()
        if key == BackloadPolicy.name:
            return BackloadPolicy()
        if key in ("even", "uniform") or key in CURVE_PRESETS:
            return CurvePolicy(key)
        raise ValueError(f"unknown allocation policy '{spec}'")
    if isinstance(spec, Sequence):
        return CurvePolicy(list(spec))
    raise TypeError("policy must be a name, a weight sequence or an AllocationPolicy")

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass
class Decision:
    allowed: bool
    retry_after_s: float
    remaining: int
    limit: int
    reset_epoch_s: float


def interval_for(rate_per_min: float) -> float:
    if rate_per_min <= 0:
        return float("inf")
    return 60.0 / float(rate_per_min)


def gcra_decide(
    now_s: float,
    last_tat_s: Optional[float],
    rate_per_min: float,
    burst: int,
) -> Tuple[float, Decision]:
    """
    Generalized Cell Rate Algorithm (token-bucket equivalent) pure decision function.

    Args:
        now_s: current wall time in seconds (epoch)
        last_tat_s: last Theoretical Arrival Time stored for the key, or None if new
        rate_per_min: permitted average request rate per minute
        burst: requests allowed back-to-back before the rate applies

    Returns:
        (new_tat_s, Decision)
    """
    interval = interval_for(rate_per_min)
    burst = max(0, int(burst))
    limit = burst + 1

    if interval == float("inf"):
        # Zero rate -> always blocked
        tat = last_tat_s if last_tat_s is not None else now_s
        return tat, Decision(False, retry_after_s=float("inf"), remaining=0, limit=0, reset_epoch_s=tat)

    # A new key starts with a full bucket
    tat = last_tat_s if last_tat_s is not None else now_s - (burst * interval)
    allow_at = tat - (burst * interval)

    if now_s >= allow_at:
        new_tat = max(tat, now_s) + interval
        used = (new_tat - now_s) / interval
        remaining = max(0, int(limit - used + 1e-9))
        decision = Decision(
            True,
            retry_after_s=0.0,
            remaining=min(remaining, burst),
            limit=limit,
            reset_epoch_s=new_tat,
        )
        return new_tat, decision

    # Blocked requests leave the TAT untouched
    decision = Decision(
        False,
        retry_after_s=max(0.0, allow_at - now_s),
        remaining=0,
        limit=limit,
        reset_epoch_s=tat,
    )
    return tat, decision

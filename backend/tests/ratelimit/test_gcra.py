import pytest

from coachdesk.ratelimit.gcra import gcra_decide, interval_for


def test_burst_then_rate():
    # 6/min with burst 3: four back-to-back requests, then one every 10s
    now = 1_000.0
    tat = None
    decisions = []
    for _ in range(5):
        tat, decision = gcra_decide(now, tat, 6, 3)
        decisions.append(decision)

    assert [d.allowed for d in decisions] == [True, True, True, True, False]
    assert [d.remaining for d in decisions[:4]] == [3, 2, 1, 0]
    assert decisions[-1].retry_after_s == pytest.approx(10.0)
    assert decisions[0].limit == 4


def test_blocked_request_does_not_move_tat():
    now = 1_000.0
    tat = None
    for _ in range(4):
        tat, _ = gcra_decide(now, tat, 6, 3)

    blocked_tat, decision = gcra_decide(now + 1, tat, 6, 3)

    assert not decision.allowed
    assert blocked_tat == tat
    assert decision.retry_after_s == pytest.approx(9.0)


def test_allows_again_after_interval():
    now = 1_000.0
    tat = None
    for _ in range(4):
        tat, _ = gcra_decide(now, tat, 6, 3)

    _, decision = gcra_decide(now + 10, tat, 6, 3)

    assert decision.allowed


def test_no_burst_means_one_request_per_interval():
    tat, first = gcra_decide(0.0, None, 60, 0)
    _, second = gcra_decide(0.5, tat, 60, 0)

    assert first.allowed
    assert not second.allowed
    assert second.retry_after_s == pytest.approx(0.5)


def test_zero_rate_blocks_everything():
    _, decision = gcra_decide(0.0, None, 0, 5)

    assert not decision.allowed
    assert interval_for(0) == float("inf")

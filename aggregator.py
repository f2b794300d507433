from collections import Counter

from models import BattleResult


def is_sorted(values):
    return all(a <= b for a, b in zip(values, values[1:]))


def is_correct(test_input, result):
    """A correct answer is non-decreasing and holds exactly the input's elements."""
    if result is None:
        return False
    result = list(result)
    return is_sorted(result) and Counter(result) == Counter(test_input)


def aggregate(test_input, outcomes, timeout_ceiling_ms, names=None):
    """Rank a round's outcomes.

    Correct outcomes come first by elapsed time, then everything else; ties
    break on participant id. Failed outcomes report the round timeout as
    their elapsed time.
    """
    names = names or {}
    scored = []
    for outcome in outcomes:
        if outcome.succeeded:
            correct = is_correct(test_input, outcome.result)
            elapsed_ms = outcome.elapsed_ms
        else:
            correct = False
            elapsed_ms = timeout_ceiling_ms
        scored.append((not correct, elapsed_ms, str(outcome.participant_id), outcome))

    scored.sort(key=lambda item: item[:3])
    return [
        BattleResult(
            participant_id=outcome.participant_id,
            elapsed_ms=elapsed_ms,
            correct=not incorrect,
            rank=rank,
            display_name=names.get(outcome.participant_id),
            failure_reason=outcome.failure_reason,
        )
        for rank, (incorrect, elapsed_ms, _, outcome) in enumerate(scored, start=1)
    ]

from collections import Counter
from typing import Dict, Iterable, List, Optional

from recon_models import ModeEvaluation, ReconciliationResult, Verdict


def choose_best(evaluations: List[ModeEvaluation]) -> ModeEvaluation:
    """Pick the strongest interpretation.

    Only a strictly higher rank displaces the current pick, so on a tie the
    first-evaluated (the row's own declared) mode stays.
    """
    if not evaluations:
        raise ValueError("no evaluations to choose from")
    best = evaluations[0]
    for ev in evaluations[1:]:
        if ev.result.verdict.outranks(best.result.verdict):
            best = ev
    return best


def build_summary(
    results: List[ReconciliationResult],
    kinds: Optional[Iterable[Verdict]] = None,
    strategy: Optional[str] = None,
) -> Dict:
    """Count final verdicts; ``kinds`` are reported even when zero."""
    counter = Counter(r.verdict for r in results)
    counts = {k.value: 0 for k in (kinds or [])}
    for verdict, n in counter.items():
        counts[verdict.value] = n

    summary = {"totalRowsReturned": len(results), "counts": counts}
    if strategy:
        summary["strategy"] = strategy
    return summary

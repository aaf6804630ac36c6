"""
Truth-source verification, one result per uploaded row.

Each row is checked under its own interpretation (PO or SO) and, when
cross-checking, under the other one too. Both run in full so both
sub-verdicts can be shown; the scorer picks the reported one.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List

from matcher import decide_verdict
from ot_client import TruthSourceError
from recon_models import (
    ModeEvaluation,
    ReconciliationResult,
    SourceMode,
    UploadRow,
    Verdict,
    VerdictResult,
)
from verdict_scorer import choose_best

logger = logging.getLogger(__name__)


def interpretations_for(row: UploadRow, cross_check: bool = True) -> List[str]:
    """Declared mode first: it wins ties. ShipDocs and UPS rows read as SO."""
    preferred = SourceMode.PO if row.source_mode == SourceMode.PO else SourceMode.SO
    if not cross_check:
        return [preferred]
    other = SourceMode.SO if preferred == SourceMode.PO else SourceMode.PO
    return [preferred, other]


def evaluate_mode(row: UploadRow, mode: str, client, cfg: Dict) -> ModeEvaluation:
    try:
        if row.order_number:
            order = client.get_order(mode, row.order_number)
            if order is None:
                return ModeEvaluation(mode, decide_verdict(False, [], cfg))
            packages = client.get_activity(mode, row.order_number)
            party_truth = order.party_name
        else:
            packages = client.find_by_tracking(mode, row.tracking_number, row.asserted_date)
            if not packages:
                return ModeEvaluation(mode, decide_verdict(False, [], cfg))
            party_truth = next((p.party_name for p in packages if p.party_name), None)
    except TruthSourceError as e:
        logger.warning("Lookup failed for %s as %s: %s", row.ref, mode, e)
        return ModeEvaluation(mode, VerdictResult(Verdict.ERROR, f"Lookup failed: {e}"))

    result = decide_verdict(
        True,
        packages,
        cfg,
        asserted_date=row.asserted_date,
        party_upload=row.party_name,
        party_truth=party_truth,
        tracking_upload=row.tracking_number,
    )
    return ModeEvaluation(mode, result, order_exists=True, party_truth=party_truth)


def _base_result(row: UploadRow, chosen_mode: str, verdict: Verdict, reason: str) -> ReconciliationResult:
    return ReconciliationResult(
        matched_entity=row.ref,
        row=row.row_index,
        source_label=f"{row.source_mode}-file",
        chosen_mode=chosen_mode,
        verdict=verdict,
        reason=reason,
        order_number=row.order_number or "",
        party=row.party_name,
        tracking=row.tracking_number or "",
        asserted_date=row.asserted_date,
    )


def verify_row(row: UploadRow, client, cfg: Dict) -> ReconciliationResult:
    modes = interpretations_for(row, cfg.get("verify", {}).get("cross_check", True))
    evaluations = [evaluate_mode(row, m, client, cfg) for m in modes]
    best = choose_best(evaluations)

    result = _base_result(row, best.mode, best.result.verdict, best.result.reason)
    result.day_delta = best.result.day_delta
    result.mode_verdicts = {ev.mode: ev.result.verdict.value for ev in evaluations}
    return result


def _safe_verify_row(row: UploadRow, client, cfg: Dict) -> ReconciliationResult:
    try:
        return verify_row(row, client, cfg)
    except Exception as e:
        logger.exception("Verification of %s failed", row.ref)
        return _base_result(row, row.source_mode, Verdict.ERROR, str(e))


def verify_rows(rows: List[UploadRow], client, cfg: Dict) -> List[ReconciliationResult]:
    """Verify rows with bounded concurrency. Output follows input order.

    Rows still running when ``verify.overall_timeout`` expires come back as
    ERROR so completed rows are not lost.
    """
    if not rows:
        return []
    verify_cfg = cfg.get("verify", {})
    max_workers = max(1, min(int(verify_cfg.get("max_workers", 8)), len(rows)))
    overall_timeout = verify_cfg.get("overall_timeout") or None

    executor = ThreadPoolExecutor(max_workers=max_workers)
    try:
        futures = [executor.submit(_safe_verify_row, row, client, cfg) for row in rows]
        done, _ = wait(futures, timeout=overall_timeout)

        results: List[ReconciliationResult] = []
        for row, fut in zip(rows, futures):
            if fut in done:
                results.append(fut.result())
            else:
                fut.cancel()
                results.append(_base_result(
                    row, row.source_mode, Verdict.ERROR,
                    f"Timed out after {overall_timeout}s waiting for truth source",
                ))
        return results
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

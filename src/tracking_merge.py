"""
Cross-file precedence merge.

Rows from every uploaded file are grouped by normalized tracking number and
each group collapses to one result: PO beats ShipDocs/SO beats UPS.
"""

import logging
from collections import OrderedDict
from datetime import date
from typing import Dict, List, Optional

from extractors import normalize_tracking, to_iso
from recon_models import ReconciliationResult, SourceMode, UploadRow, Verdict

logger = logging.getLogger(__name__)

PO_TIER, SHIP_TIER, UPS_TIER = "po", "ship", "ups"

_TIER_OF = {
    SourceMode.PO: PO_TIER,
    SourceMode.SO: SHIP_TIER,
    SourceMode.SHIPDOCS: SHIP_TIER,
    SourceMode.UPS: UPS_TIER,
}


def group_by_tracking(rows: List[UploadRow]) -> "OrderedDict[str, Dict[str, List[UploadRow]]]":
    """tracking key -> {tier: rows}, keys in first-seen order. Rows without tracking are skipped."""
    groups: "OrderedDict[str, Dict[str, List[UploadRow]]]" = OrderedDict()
    for r in rows:
        key = normalize_tracking(r.tracking_number)
        if not key:
            continue
        bucket = groups.setdefault(key, {PO_TIER: [], SHIP_TIER: [], UPS_TIER: []})
        bucket[_TIER_OF[r.source_mode]].append(r)
    return groups


def pick_representative(rows: List[UploadRow]) -> UploadRow:
    """Earliest date string wins; missing dates sort as '' and so come first."""
    return sorted(rows, key=lambda r: to_iso(r.asserted_date))[0]


def _earliest_date(rows: List[UploadRow]) -> Optional[date]:
    dates = [r.asserted_date for r in rows if r.asserted_date]
    return min(dates) if dates else None


def _resolve_group(key: str, bucket: Dict[str, List[UploadRow]]) -> ReconciliationResult:
    if bucket[PO_TIER]:
        pick = pick_representative(bucket[PO_TIER])
        # borrowed date is display only
        shown_date = pick.asserted_date or _earliest_date(bucket[UPS_TIER]) or _earliest_date(bucket[SHIP_TIER])
        return ReconciliationResult(
            matched_entity=f"trk:{key}",
            row=f"trk:{key}",
            source_label=f"{pick.source_mode}-file",
            chosen_mode=SourceMode.PO,
            verdict=Verdict.MATCH_PO,
            reason="Tracking appears on PO; ShipDocs/UPS duplicates suppressed",
            order_number=pick.order_number or "(missing PO#)",
            party=pick.party_name,
            tracking=key,
            asserted_date=shown_date,
            mode_verdicts={SourceMode.PO: "match"},
        )

    if bucket[SHIP_TIER]:
        pick = pick_representative(bucket[SHIP_TIER])
        shown_date = pick.asserted_date or _earliest_date(bucket[UPS_TIER])
        return ReconciliationResult(
            matched_entity=f"trk:{key}",
            row=f"trk:{key}",
            source_label=f"{pick.source_mode}-file",
            chosen_mode=pick.source_mode,
            verdict=Verdict.MATCH_SHIPDOCS,
            reason="Tracking appears on ShipDocs; no PO found for this tracking",
            order_number=pick.order_number or "(missing ShipDoc#)",
            party=pick.party_name,
            tracking=key,
            asserted_date=shown_date,
            mode_verdicts={SourceMode.SO: "match"},
        )

    pick = pick_representative(bucket[UPS_TIER])
    return ReconciliationResult(
        matched_entity=f"trk:{key}",
        row=f"trk:{key}",
        source_label=f"{SourceMode.UPS}-file",
        chosen_mode=SourceMode.UPS,
        verdict=Verdict.UNMATCHED_UPS,
        reason="Tracking not found on PO or ShipDocs",
        order_number="",
        party=pick.party_name,
        tracking=key,
        asserted_date=pick.asserted_date,
    )


def reconcile_by_tracking(rows: List[UploadRow]) -> List[ReconciliationResult]:
    """One result per distinct tracking number across all files."""
    out: List[ReconciliationResult] = []
    for key, bucket in group_by_tracking(rows).items():
        try:
            out.append(_resolve_group(key, bucket))
        except Exception as e:
            logger.exception("Tracking group %s failed", key)
            out.append(ReconciliationResult(
                matched_entity=f"trk:{key}",
                row=f"trk:{key}",
                source_label="",
                chosen_mode="",
                verdict=Verdict.ERROR,
                reason=str(e),
                tracking=key,
            ))
    return out

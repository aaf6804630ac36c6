import re
from datetime import date
from typing import Dict, List, Optional, Tuple

from rapidfuzz.distance import JaroWinkler

from recon_models import ActivityPackage, Verdict, VerdictResult


_CORP_SUFFIX_RE = re.compile(
    r"\b(INCORPORATED|INC|LLC|L\.L\.C|LTD|LIMITED|CORPORATION|CORP|CO|COMPANY|GMBH|PLC|LP)\b\.?"
)


def _normalize_name(text: str) -> str:
    if not text:
        return ""
    s = text.upper().replace("&", " AND ")
    s = _CORP_SUFFIX_RE.sub("", s)
    s = re.sub(r"[^A-Z0-9]", "", s)
    return s


def _similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return JaroWinkler.normalized_similarity(a, b)


def _party_agrees(upload: str, truth: str, min_sim: float) -> Tuple[bool, int]:
    u, t = _normalize_name(upload), _normalize_name(truth)
    if u and t and (u in t or t in u):
        return True, 100
    sim = _similarity(u, t)
    return sim >= min_sim, int(sim * 100)


def _closest_package(asserted: date, pkgs: List[ActivityPackage]) -> Optional[ActivityPackage]:
    dated = [p for p in pkgs if p.date]
    if not dated:
        return None
    # min() keeps the first package on equal distance
    return min(dated, key=lambda p: abs((p.date - asserted).days))


def decide_verdict(
    order_exists: bool,
    packages: List[ActivityPackage],
    cfg: Dict,
    asserted_date: Optional[date] = None,
    party_upload: Optional[str] = None,
    party_truth: Optional[str] = None,
    tracking_upload: Optional[str] = None,
) -> VerdictResult:
    """Compare one uploaded row with what the truth source answered. No I/O.

    Lookup failures never reach here; the caller turns them into ERROR.
    """
    if not order_exists:
        return VerdictResult(Verdict.NOT_FOUND, "Not found in truth source")

    tol_days = cfg.get("tolerances", {}).get("days", 1)
    party_min = cfg.get("similarity", {}).get("party_min", 0.85)
    problems: List[str] = []
    notes: List[str] = []

    candidates = packages
    if tracking_upload and packages:
        matching = [p for p in packages if p.tracking_number == tracking_upload]
        if matching:
            candidates = matching
            notes.append("tracking on order")
        else:
            problems.append(f"tracking {tracking_upload} not on order activity")

    day_delta = None
    if asserted_date:
        pkg = _closest_package(asserted_date, candidates)
        if pkg is None:
            notes.append("no dated activity to compare")
        else:
            day_delta = (pkg.date - asserted_date).days
            if abs(day_delta) > tol_days:
                problems.append(
                    f"date differs by {abs(day_delta)} day(s) (actual {pkg.date.isoformat()}, tol {tol_days})"
                )
            else:
                notes.append("date≈")

    if party_upload and party_truth:
        agrees, score = _party_agrees(party_upload, party_truth, party_min)
        if agrees:
            notes.append(f"party~{score}")
        else:
            problems.append(f"party '{party_upload}' vs '{party_truth}' (~{score})")

    if problems:
        return VerdictResult(Verdict.MISMATCH, "Found; " + "; ".join(problems), day_delta)
    reason = "Found"
    if notes:
        reason += "; " + ", ".join(notes)
    return VerdictResult(Verdict.OK, reason, day_delta)

"""
Reconciliation request entry point.

Takes up to one file per role, picks a strategy, parses the files
concurrently and returns ``{"summary": ..., "details": [...]}``.
"""

import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from config_loader import load_reconcile_config
from field_normalizer import ParseError, parse_upload
from ot_client import OrderTruthClient
from recon_models import MERGE_VERDICTS, VERIFY_VERDICTS, ParsedFile, SourceMode
from tracking_merge import reconcile_by_tracking
from verdict_scorer import build_summary
from verifier import verify_rows

logger = logging.getLogger(__name__)

AUTO, TRACKING, VERIFY = "auto", "tracking", "verify"
STRATEGIES = (AUTO, TRACKING, VERIFY)

# merge groups are keyed in first-seen order, so files are fed in this order
_ROLE_ORDER = {SourceMode.PO: 0, SourceMode.SO: 1, SourceMode.SHIPDOCS: 2, SourceMode.UPS: 3}


class RequestError(ValueError):
    pass


@dataclass
class UploadFile:
    role: str
    filename: str
    data: bytes


def select_strategy(uploads: List[UploadFile], requested: str = AUTO, has_client: bool = False) -> str:
    """Decide which matching strategy runs for this set of files.

    auto: a UPS feed or files of two or more roles -> tracking merge;
    a single PO / SO / ShipDocs role -> truth-source verification when a
    client is available, tracking merge otherwise.
    """
    if requested not in STRATEGIES:
        raise RequestError(f"Unknown strategy: {requested}")
    if requested == VERIFY:
        if not has_client:
            raise RequestError("Verification requested but no truth source is configured (set OT_BASE)")
        return VERIFY
    if requested == TRACKING:
        return TRACKING

    roles = {u.role for u in uploads}
    if SourceMode.UPS in roles or len(roles) > 1:
        return TRACKING
    return VERIFY if has_client else TRACKING


def _parse_all(uploads: List[UploadFile], require_tracking: bool) -> Tuple[List[ParsedFile], List[str]]:
    parsed: List[ParsedFile] = []
    file_errors: List[str] = []
    with ThreadPoolExecutor(max_workers=len(uploads)) as pool:
        futures = [
            (u, pool.submit(parse_upload, u.data, u.filename, u.role, require_tracking))
            for u in uploads
        ]
        for u, fut in futures:
            try:
                parsed.append(fut.result())
            except ParseError as e:
                logger.warning("Skipping %s file %s: %s", u.role, u.filename, e)
                file_errors.append(f"{u.filename}: {e}")
    parsed.sort(key=lambda pf: _ROLE_ORDER[pf.source_mode])
    return parsed, file_errors


def _no_rows_message(parsed: List[ParsedFile], file_errors: List[str]) -> str:
    parts = ["No usable rows (need an order number or tracking number column)."]
    for pf in parsed:
        parts.append(f"{pf.source_file} [{pf.source_mode}] found headers: {' | '.join(pf.headers) or '(none)'}")
    parts.extend(file_errors)
    return " ".join(parts)


def reconcile_uploads(
    uploads: List[UploadFile],
    client: Optional[OrderTruthClient] = None,
    cfg: Optional[Dict] = None,
    strategy: Optional[str] = None,
) -> Dict:
    uploads = [u for u in uploads or [] if u is not None]
    if not uploads:
        raise RequestError("Please upload at least one file (PO and/or ShipDocs and/or UPS).")
    for u in uploads:
        if u.role not in SourceMode.ALL:
            raise RequestError(f"Unknown file role: {u.role}")

    cfg = cfg or load_reconcile_config()
    chosen = select_strategy(uploads, strategy or cfg.get("strategy", AUTO), client is not None)
    logger.info("Reconciling %d file(s) with %s strategy", len(uploads), chosen)

    parsed, file_errors = _parse_all(uploads, require_tracking=chosen == TRACKING)
    rows = [r for pf in parsed for r in pf.rows]
    if not rows:
        raise ParseError(_no_rows_message(parsed, file_errors))

    if chosen == TRACKING:
        details = reconcile_by_tracking(rows)
        kinds = MERGE_VERDICTS
    else:
        details = verify_rows(rows, client, cfg)
        kinds = VERIFY_VERDICTS

    summary = build_summary(details, kinds, chosen)
    if file_errors:
        summary["fileErrors"] = file_errors
    logger.info("Reconciliation done: %s", summary["counts"])
    return {"summary": summary, "details": [d.to_dict() for d in details]}


def _read_upload(role: str, path: Optional[str]) -> Optional[UploadFile]:
    if not path:
        return None
    p = Path(path)
    return UploadFile(role=role, filename=p.name, data=p.read_bytes())


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile PO / ShipDocs / UPS uploads")
    parser.add_argument("--po", help="purchase order file (CSV/XLSX)")
    parser.add_argument("--so", help="sales order file (CSV/XLSX)")
    parser.add_argument("--shipdocs", help="shipment document file (CSV/XLSX)")
    parser.add_argument("--ups", help="UPS tracking feed (CSV/XLSX)")
    parser.add_argument("--strategy", choices=STRATEGIES, help="override config strategy")
    parser.add_argument("--output", help="write the JSON result here instead of stdout")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = load_reconcile_config()
    client = OrderTruthClient.from_env(timeout=cfg.get("truth_source", {}).get("timeout", 15))
    uploads = [
        _read_upload(SourceMode.PO, args.po),
        _read_upload(SourceMode.SO, args.so),
        _read_upload(SourceMode.SHIPDOCS, args.shipdocs),
        _read_upload(SourceMode.UPS, args.ups),
    ]

    print("=== Reconciliation ===")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    try:
        result = reconcile_uploads(uploads, client=client, cfg=cfg, strategy=args.strategy)
    except (RequestError, ParseError) as e:
        print(f"❌ {e}")
        return 1

    summary = result["summary"]
    print(f"Strategy: {summary['strategy']}  Rows returned: {summary['totalRowsReturned']}")
    for verdict, n in summary["counts"].items():
        print(f"  {verdict}: {n}")
    for err in summary.get("fileErrors", []):
        print(f"⚠️ {err}")

    payload = json.dumps(result, ensure_ascii=False, indent=2)
    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
        print(f"Saved results to {args.output}")
    else:
        print(payload)
    return 0


if __name__ == "__main__":
    sys.exit(main())

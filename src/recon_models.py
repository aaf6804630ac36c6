from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Union


class SourceMode:
    PO = "PO"
    SO = "SO"
    SHIPDOCS = "ShipDocs"
    UPS = "UPS"

    ALL = (PO, SO, SHIPDOCS, UPS)


class Verdict(str, Enum):
    """Every verdict kind the engine can emit.

    Only the verification verdicts carry a rank. Asking for the rank of a
    merge verdict raises instead of silently sorting it somewhere.
    """

    OK = "OK"
    MISMATCH = "MISMATCH"
    NOT_FOUND = "NOT_FOUND"
    ERROR = "ERROR"
    MATCH_PO = "MATCH_PO"
    MATCH_SHIPDOCS = "MATCH_SHIPDOCS"
    UNMATCHED_UPS = "UNMATCHED_UPS"

    @property
    def rank(self) -> int:
        try:
            return _VERDICT_RANK[self]
        except KeyError:
            raise ValueError(f"verdict {self.value} has no rank") from None

    def outranks(self, other: "Verdict") -> bool:
        return self.rank > other.rank


_VERDICT_RANK = {
    Verdict.OK: 3,
    Verdict.MISMATCH: 2,
    Verdict.NOT_FOUND: 1,
    Verdict.ERROR: 0,
}

VERIFY_VERDICTS = [Verdict.OK, Verdict.MISMATCH, Verdict.NOT_FOUND, Verdict.ERROR]
MERGE_VERDICTS = [Verdict.MATCH_PO, Verdict.MATCH_SHIPDOCS, Verdict.UNMATCHED_UPS]


@dataclass
class UploadRow:
    source_file: str
    source_mode: str
    row_index: int
    order_number: Optional[str] = None
    tracking_number: Optional[str] = None
    party_name: Optional[str] = None
    asserted_date: Optional[date] = None

    @property
    def ref(self) -> str:
        return f"{self.source_file}:{self.row_index}"


@dataclass
class ParsedFile:
    source_file: str
    source_mode: str
    headers: List[str]
    rows: List[UploadRow]
    total_rows: int = 0


@dataclass
class OrderRecord:
    order_number: str
    party_name: Optional[str] = None
    exists: bool = True


@dataclass
class ActivityPackage:
    tracking_number: str
    date: Optional[date] = None
    order_number: Optional[str] = None
    party_name: Optional[str] = None


@dataclass
class VerdictResult:
    verdict: Verdict
    reason: str
    day_delta: Optional[int] = None


@dataclass
class ModeEvaluation:
    mode: str
    result: VerdictResult
    order_exists: bool = False
    party_truth: Optional[str] = None


@dataclass
class ReconciliationResult:
    matched_entity: str
    row: Union[int, str]
    source_label: str
    chosen_mode: str
    verdict: Verdict
    reason: str
    order_number: str = ""
    party: Optional[str] = None
    tracking: str = ""
    asserted_date: Optional[date] = None
    day_delta: Optional[int] = None
    # interpretation -> sub-verdict, kept even when another mode won
    mode_verdicts: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        """Wire shape: dates as YYYY-MM-DD and unknowns as empty strings."""
        return {
            "row": self.row,
            "sourceMode": self.source_label,
            "chosenMode": self.chosen_mode,
            "orderNumber": self.order_number or "",
            "partyUpload": self.party or "",
            "trackingUpload": self.tracking or "",
            "assertedDate": self.asserted_date.isoformat() if self.asserted_date else "",
            "verdict": self.verdict.value,
            "reason": self.reason,
            "dayDelta": self.day_delta if self.day_delta is not None else "",
            "poVerdict": self.mode_verdicts.get(SourceMode.PO, ""),
            "soVerdict": self.mode_verdicts.get(SourceMode.SO, ""),
        }

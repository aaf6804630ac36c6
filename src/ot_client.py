import logging
import os
from datetime import date
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv

from extractors import normalize_tracking, parse_asserted_date
from recon_models import ActivityPackage, OrderRecord, SourceMode

load_dotenv()

logger = logging.getLogger(__name__)

# mode -> (order endpoint, activity endpoint)
ENDPOINTS = {
    SourceMode.PO: ("purchase-orders", "receipts"),
    SourceMode.SO: ("sales-orders", "shipments"),
}

_PARTY_KEYS = ("partyName", "vendorName", "customerName", "party", "vendor", "customer")
_DOC_DATE_KEYS = ("date", "shipDate", "receiptDate")


class TruthSourceError(RuntimeError):
    """The lookup itself failed. Distinct from an order that does not exist."""


def _first_str(obj: Dict, keys) -> Optional[str]:
    for k in keys:
        v = obj.get(k)
        if v:
            return str(v).strip()
    return None


_ORDER_ID_KEYS = ("orderNumber", "number", "id")


def _unwrap_list(data: Any, keys=("orders", "data", "results", "items")) -> Any:
    # an order object may carry its own line items; only envelopes are unwrapped
    if isinstance(data, dict) and not any(k in data for k in _ORDER_ID_KEYS):
        for k in keys:
            if isinstance(data.get(k), list):
                return data[k]
    return data


def extract_packages(activity: Any) -> List[ActivityPackage]:
    """Map an activity payload into packages [{tracking, date}]."""
    if not activity:
        return []
    if isinstance(activity, dict):
        docs = activity.get("docs") or []
    elif isinstance(activity, list):
        docs = activity
    else:
        raise TruthSourceError(f"Unexpected activity payload: {type(activity).__name__}")

    pkgs: List[ActivityPackage] = []
    for doc in docs:
        if not isinstance(doc, dict):
            raise TruthSourceError("Unexpected activity document shape")
        doc_date = parse_asserted_date(_first_str(doc, _DOC_DATE_KEYS))
        order_number = _first_str(doc, ("orderNumber",))
        party = _first_str(doc, _PARTY_KEYS)
        for p in doc.get("packages") or []:
            t = normalize_tracking(p.get("trackingNumber") or p.get("tracking"))
            if not t:
                continue
            p_date = parse_asserted_date(_first_str(p, _DOC_DATE_KEYS)) or doc_date
            pkgs.append(ActivityPackage(t, p_date, order_number, party))
    return pkgs


class OrderTruthClient:
    """Order-management (truth source) API client."""

    def __init__(self, base_url: str, token: Optional[str], timeout: float = 15):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    @classmethod
    def from_env(cls, timeout: float = 15) -> Optional["OrderTruthClient"]:
        """Build a client from OT_BASE / OT_TOKEN, or None when no base URL is configured."""
        base = os.getenv("OT_BASE")
        if not base:
            return None
        return cls(base, os.getenv("OT_TOKEN"), timeout=timeout)

    def _endpoints(self, mode: str):
        try:
            return ENDPOINTS[mode]
        except KeyError:
            raise ValueError(f"mode must be 'PO' or 'SO', got {mode!r}") from None

    def _get(self, path: str, params: Dict) -> Any:
        if not self.token:
            raise TruthSourceError("Missing OT_TOKEN")
        url = f"{self.base_url}/{path}"
        try:
            response = requests.get(url, headers=self.headers, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise TruthSourceError(f"{path} lookup timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise TruthSourceError(f"{path} lookup failed: {e}") from e

        if response.status_code == 404:
            return None
        try:
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            raise TruthSourceError(f"{path} lookup failed: {e}") from e
        except ValueError as e:
            raise TruthSourceError(f"{path} returned non-JSON body") from e

    def get_order(self, mode: str, order_number: str) -> Optional[OrderRecord]:
        """Look up one order. None means the truth source has no such order."""
        order_path, _ = self._endpoints(mode)
        data = _unwrap_list(self._get(order_path, {"orderNumber": order_number}))

        if data is None:
            return None
        if isinstance(data, list):
            if not data:
                return None
            data = data[0]
        if not isinstance(data, dict):
            raise TruthSourceError(f"Unexpected order payload: {type(data).__name__}")
        if data.get("found") is False or data.get("exists") is False:
            return None

        return OrderRecord(
            order_number=_first_str(data, _ORDER_ID_KEYS) or order_number,
            party_name=_first_str(data, _PARTY_KEYS),
            exists=True,
        )

    def get_activity(self, mode: str, order_number: str) -> List[ActivityPackage]:
        _, activity_path = self._endpoints(mode)
        return extract_packages(self._get(activity_path, {"orderNumber": order_number}))

    def find_by_tracking(
        self, mode: str, tracking_number: str, hint_date: Optional[date] = None
    ) -> List[ActivityPackage]:
        """Search receipts/shipments by tracking number, optionally scoped by a date hint."""
        _, activity_path = self._endpoints(mode)
        tracking = normalize_tracking(tracking_number)
        params = {"trackingNumber": tracking}
        if hint_date:
            params["date"] = hint_date.isoformat()

        pkgs = extract_packages(self._get(activity_path, params))
        return [p for p in pkgs if p.tracking_number == tracking]

"""
HTTP endpoint for the reconciliation engine.
The page posts multipart form data: poFile, soFile, shipFile, upsFile and an optional strategy.
"""

import logging
import os

from flask import Flask, jsonify, request

from config_loader import load_reconcile_config
from field_normalizer import ParseError
from ot_client import OrderTruthClient
from recon_models import SourceMode
from reconcile_main import RequestError, UploadFile, reconcile_uploads

logger = logging.getLogger(__name__)

app = Flask(__name__)

FORM_FIELDS = {
    "poFile": SourceMode.PO,
    "soFile": SourceMode.SO,
    "shipFile": SourceMode.SHIPDOCS,
    "upsFile": SourceMode.UPS,
}


def _uploads_from_request():
    uploads = []
    for field_name, role in FORM_FIELDS.items():
        f = request.files.get(field_name)
        if f is None or not f.filename:
            continue
        uploads.append(UploadFile(role=role, filename=f.filename, data=f.read()))
    return uploads


@app.route("/api/reconcile", methods=["POST"])
def handle_reconcile():
    """Reconcile the uploaded files and return {summary, details}."""
    try:
        cfg = load_reconcile_config()
        client = OrderTruthClient.from_env(timeout=cfg.get("truth_source", {}).get("timeout", 15))
        result = reconcile_uploads(
            _uploads_from_request(),
            client=client,
            cfg=cfg,
            strategy=request.form.get("strategy") or None,
        )
        return jsonify(result), 200
    except RequestError as e:
        return str(e), 400
    except ParseError as e:
        return str(e), 422
    except Exception as e:
        logger.exception("Reconcile error")
        return str(e) or "Internal Server Error", 500


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(port=int(os.getenv("PORT", "3000")))

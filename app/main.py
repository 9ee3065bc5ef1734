"""
HTTP API for Household Reconciler

Thin Flask layer over the orchestrator flows. Authentication of users
happens in front of this service; the resolved family id arrives in the
X-Family-Id header. Only the import webhook authenticates itself, with a
shared secret.

Status codes:
    200 success, 400 validation/parse failure,
    401 webhook secret missing or wrong, 500 storage failure
"""

import hmac
from typing import Optional
from uuid import UUID

import structlog
from flask import Flask, current_app, jsonify, request

from reconciler.config import get_settings, validate_all_settings
from reconciler.models.results import ImportResult
from reconciler.orchestrator import (
    BudgetFlow,
    ImportFlow,
    MatchFlow,
    create_app_components,
)
from reconciler.services.storage import StorageError


logger = structlog.get_logger()

# ImportResult errors that come from storage rather than from the payload
STORAGE_FAILURES = ("Failed to set up import", "Failed to save transactions")


def _flows() -> tuple[ImportFlow, MatchFlow, BudgetFlow]:
    return current_app.extensions["reconciler"]


def _family_id() -> Optional[UUID]:
    raw = request.headers.get("X-Family-Id", "")
    try:
        return UUID(raw)
    except ValueError:
        return None


def _no_family():
    return jsonify({"error": "No family found"}), 400


def _import_response(result: ImportResult):
    if result.success:
        return jsonify(result.to_response()), 200
    status = 500 if result.error_message in STORAGE_FAILURES else 400
    return jsonify(result.to_response()), status


def _webhook_key() -> str:
    key = request.headers.get("x-api-key")
    if not key:
        key = request.headers.get("Authorization", "").removeprefix("Bearer ")
    return key or ""


def _verify_webhook_key() -> bool:
    """
    Compare the caller's key with the configured one in constant time.

    No key configured means every request is rejected.
    """
    expected = get_settings().imports.api_key
    if not expected:
        logger.warning("webhook_api_key_not_configured")
        return False
    return hmac.compare_digest(_webhook_key().encode(), expected.encode())


def create_app(
    components: Optional[tuple[ImportFlow, MatchFlow, BudgetFlow]] = None,
) -> Flask:
    """
    Build the Flask application.

    Args:
        components: (import_flow, match_flow, budget_flow); built from
                    settings with create_app_components() when omitted
    """
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = get_settings().app.max_upload_size_bytes
    app.extensions["reconciler"] = components or create_app_components()

    @app.route("/api/transactions/import-csv", methods=["POST"])
    async def import_csv():
        family_id = _family_id()
        if family_id is None:
            return _no_family()

        upload = request.files.get("file")
        if upload is None:
            return jsonify({"error": "No file uploaded"}), 400

        text = upload.read().decode("utf-8", errors="replace")
        import_flow, _, _ = _flows()
        return _import_response(await import_flow.import_csv(family_id, text))

    @app.route("/api/transactions/import-email", methods=["POST"])
    async def import_email():
        import_flow, _, _ = _flows()
        if not _verify_webhook_key():
            await import_flow.reject_webhook(request.remote_addr)
            return jsonify({"error": "Unauthorized"}), 401

        if request.is_json:
            data = request.get_json(silent=True)
            if not isinstance(data, dict):
                return jsonify({"error": "Invalid JSON body"}), 400
        elif request.mimetype in ("multipart/form-data", "application/x-www-form-urlencoded"):
            data = request.form.to_dict()
        else:
            return jsonify({"error": "Unsupported content type"}), 400

        family_id = _family_id()
        if family_id is None:
            return _no_family()

        return _import_response(await import_flow.import_webhook(family_id, data))

    @app.route("/api/transactions/import-email", methods=["GET"])
    def import_email_health():
        return jsonify({
            "status": "ok",
            "message": "Transaction import endpoint ready",
            "formats": [
                "Simple JSON: { amount, merchant, date?, card_last4?, type? }",
                "Email: { subject, body, from? }",
                "Form data (Mailgun/SendGrid style)",
            ],
        })

    @app.route("/api/transactions/sync-sheet", methods=["POST"])
    async def sync_sheet():
        family_id = _family_id()
        if family_id is None:
            return _no_family()

        body = request.get_json(silent=True)
        sheet_url = body.get("sheetUrl") if isinstance(body, dict) else None
        if sheet_url is not None and not isinstance(sheet_url, str):
            return jsonify({"success": False, "error": "Invalid Google Sheets URL"}), 400

        import_flow, _, _ = _flows()
        return _import_response(
            await import_flow.sync_sheet(family_id, sheet_url=sheet_url)
        )

    @app.route("/api/transactions/sync-sheet", methods=["GET"])
    def sync_sheet_info():
        settings = get_settings().imports
        return jsonify({"sheetId": settings.sheet_id, "sheetUrl": settings.sheet_url})

    @app.route("/api/transactions/auto-match", methods=["POST"])
    async def auto_match():
        family_id = _family_id()
        if family_id is None:
            return _no_family()

        _, match_flow, _ = _flows()
        result = await match_flow.auto_match(family_id)
        if not result.success:
            return jsonify({"success": False, "error": result.error_message}), 500
        return jsonify({
            "success": True,
            "matched": result.matched,
            "details": [d.model_dump(mode="json") for d in result.details],
        })

    @app.route("/api/budget/money-status", methods=["GET"])
    async def money_status():
        family_id = _family_id()
        if family_id is None:
            return _no_family()

        year = request.args.get("year", type=int)
        month = request.args.get("month", type=int)
        if (year is None or month is None
                or not 1 <= year <= 9999 or not 1 <= month <= 12):
            return jsonify({"error": "year (1-9999) and month (1-12) are required"}), 400

        _, _, budget_flow = _flows()
        try:
            status = await budget_flow.money_status(family_id, year, month)
        except StorageError as e:
            logger.error("money_status_failed", family_id=str(family_id), error=str(e))
            return jsonify({"error": "Failed to load money status"}), 500

        body = status.model_dump(mode="json")
        body["total_available"] = status.total_available
        return jsonify(body)

    @app.route("/api/health", methods=["GET"])
    def health():
        status = validate_all_settings()
        return jsonify({
            "status": "ok",
            "storage_backend": get_settings().app.storage_backend,
            "webhook_enabled": status["webhook_enabled"],
            "google_sheets_configured": status["google_sheets"],
        })

    @app.errorhandler(413)
    def too_large(_error):
        return jsonify({"error": "File too large"}), 413

    return app


if __name__ == "__main__":
    create_app().run(debug=get_settings().app.debug_mode)

"""
Flask backend for the food scan mobile app.

Clients register and log in with email and password, upload a photo (or PDF)
of food for analysis, and browse, filter, paginate and delete their scan
history. Uploaded files live in local storage (development) or Amazon S3
(production); accounts and scan records live in SQLite. Every protected route
expects an ``Authorization: Bearer <jwt>`` header and only ever touches the
caller's own data.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from flask import Flask, request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from foodscan.accounts import Account, AccountStore
from foodscan.analysis import AnalysisProvider, SyntheticAnalysisProvider
from foodscan.blob_store import BlobStore, LocalBlobStore, S3BlobStore, build_s3_client
from foodscan.db import Database
from foodscan.errors import (
  InvalidInput,
  NotFound,
  PayloadTooLarge,
  ScanServiceError,
  Unauthenticated,
)
from foodscan.ml_service import RemoteAnalysisProvider
from foodscan.scan_store import ScanFilter, ScanStore, page_count, parse_page
from foodscan.service import ScanService
from foodscan.settings import load_settings

# Room for the multipart envelope around a maximum-size file.
MULTIPART_OVERHEAD_BYTES = 1024 * 1024

HTTP_ERROR_KINDS = {
  400: "InvalidInput",
  401: "Unauthenticated",
  404: "NotFound",
  405: "MethodNotAllowed",
}


def _build_blob_store(config: Mapping[str, Any]) -> BlobStore:
  backend = config["STORAGE_BACKEND"]
  if backend == "s3":
    return S3BlobStore(
      build_s3_client(config.get("AWS_REGION")),
      config["AWS_BUCKET_NAME"],
      acl=config.get("AWS_S3_ACL") or None,
      max_bytes=config["MAX_UPLOAD_BYTES"],
    )
  if backend == "local":
    return LocalBlobStore(config["UPLOADS_DIR"], max_bytes=config["MAX_UPLOAD_BYTES"])
  raise RuntimeError(f"Unknown STORAGE_BACKEND {backend!r}; expected 'local' or 's3'.")


def _build_analyzer(config: Mapping[str, Any]) -> AnalysisProvider:
  provider = config["ANALYSIS_PROVIDER"]
  if provider == "remote":
    return RemoteAnalysisProvider(
      config["ML_SERVICE_URL"],
      api_key=config.get("ML_SERVICE_API_KEY"),
      timeout=config["ML_SERVICE_TIMEOUT"],
    )
  if provider == "synthetic":
    return SyntheticAnalysisProvider(
      config.get("ANALYSIS_SEED"),
      min_latency=config["ANALYSIS_MIN_LATENCY"],
      max_latency=config["ANALYSIS_MAX_LATENCY"],
    )
  raise RuntimeError(f"Unknown ANALYSIS_PROVIDER {provider!r}; expected 'synthetic' or 'remote'.")


def _cors_origins(raw: str) -> Any:
  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
  if not origins or origins == ["*"]:
    return "*"
  return origins


def create_app(test_config: Optional[Mapping[str, Any]] = None) -> Flask:
  """Instantiate the Flask application and register routes."""
  app = Flask(__name__)
  app.config.update(load_settings())
  if test_config:
    app.config.update(test_config)
  app.config["MAX_CONTENT_LENGTH"] = app.config["MAX_UPLOAD_BYTES"] + MULTIPART_OVERHEAD_BYTES
  app.logger.setLevel(app.config["LOG_LEVEL"])

  CORS(app, resources={r"/api/*": {"origins": _cors_origins(app.config["CORS_ORIGINS"])}})

  database = Database(app.config["SQLITE_DB_PATH"], timeout=app.config["SQLITE_TIMEOUT"])
  database.initialise()
  accounts = AccountStore(
    database,
    jwt_secret=app.config["JWT_SECRET_KEY"],
    jwt_algorithm=app.config["JWT_ALGORITHM"],
    token_lifetime=timedelta(minutes=app.config["JWT_EXPIRATION_MINUTES"]),
    password_min_length=app.config["PASSWORD_MIN_LENGTH"],
  )
  scans = ScanStore(database, max_file_size=app.config["MAX_UPLOAD_BYTES"])
  blobs = _build_blob_store(app.config)
  service = ScanService(accounts, scans, blobs, _build_analyzer(app.config))
  app.extensions["scan_service"] = service

  app.logger.info(
    "Scan service ready: storage=%s analysis=%s",
    app.config["STORAGE_BACKEND"],
    app.config["ANALYSIS_PROVIDER"],
  )

  def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}

  def _password_from(payload: Mapping[str, Any]) -> Any:
    return payload.get("password") if payload.get("password") is not None else payload.get("secret")

  def _get_request_account() -> Account:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
      raise Unauthenticated()

    token = auth_header.split(" ", 1)[1].strip()
    if not token:
      raise Unauthenticated()

    account_id = accounts.validate_token(token)
    try:
      return accounts.get(account_id)
    except NotFound as exc:
      raise Unauthenticated("Invalid token - user not found.") from exc

  def _session_payload(account: Account) -> Dict[str, Any]:
    return {"token": accounts.issue_token(account), "account": account.to_public_dict()}

  # -- errors -------------------------------------------------------------

  @app.errorhandler(ScanServiceError)
  def handle_service_error(exc: ScanServiceError) -> Tuple[Dict[str, Any], int]:
    if exc.status_code >= 500:
      app.logger.error("%s on %s %s: %s", exc.kind, request.method, request.path, exc.message)
    return exc.to_dict(), exc.status_code

  @app.errorhandler(RequestEntityTooLarge)
  def handle_too_large(exc: RequestEntityTooLarge) -> Tuple[Dict[str, Any], int]:
    error = PayloadTooLarge()
    return error.to_dict(), error.status_code

  @app.errorhandler(HTTPException)
  def handle_http_error(exc: HTTPException) -> Tuple[Dict[str, Any], int]:
    kind = HTTP_ERROR_KINDS.get(exc.code or 500, "HTTPError")
    return {"error": kind, "message": exc.description}, exc.code or 500

  @app.errorhandler(Exception)
  def handle_unexpected(exc: Exception) -> Tuple[Dict[str, Any], int]:
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return {"error": "InternalError", "message": "Internal server error."}, 500

  # -- auth ---------------------------------------------------------------

  @app.route("/api/auth/register", methods=["POST"])
  def register() -> Tuple[Dict[str, Any], int]:
    """Register a new account and issue a JWT."""
    payload = _json_body()
    account = accounts.register(payload.get("name"), payload.get("email"), _password_from(payload))
    return _session_payload(account), 201

  @app.route("/api/auth/login", methods=["POST"])
  def login() -> Tuple[Dict[str, Any], int]:
    """Authenticate an existing user and return a JWT."""
    payload = _json_body()
    email = payload.get("email")
    password = _password_from(payload)
    if not email or not password:
      raise InvalidInput("Email and password are required.")
    account = accounts.verify(email, password)
    return _session_payload(account), 200

  @app.route("/api/auth/verify", methods=["GET"])
  def verify() -> Tuple[Dict[str, Any], int]:
    """Return the account behind the supplied JWT."""
    return {"account": _get_request_account().to_public_dict()}, 200

  @app.route("/api/auth/refresh", methods=["POST"])
  def refresh() -> Tuple[Dict[str, Any], int]:
    """Exchange a still-valid JWT for a fresh one."""
    return _session_payload(_get_request_account()), 200

  # -- scans --------------------------------------------------------------

  @app.route("/api/scan/analyze", methods=["POST"])
  def analyze() -> Tuple[Dict[str, Any], int]:
    """Store the uploaded file, analyse it and persist the scan record."""
    account = _get_request_account()
    uploaded = request.files.get("file")
    if uploaded is None or not uploaded.filename:
      raise InvalidInput("No file uploaded.")

    record = service.analyze_upload(
      account.id,
      file_name=uploaded.filename,
      stream=uploaded.stream,
      content_type=(uploaded.mimetype or "").lower(),
      declared_size=uploaded.content_length or None,
    )
    return {"record": record.to_public_dict(blobs.access_path)}, 200

  @app.route("/api/scan/history", methods=["GET"])
  def history() -> Tuple[Dict[str, Any], int]:
    """Return one page of the caller's scans, newest first."""
    account = _get_request_account()
    page, limit = parse_page(request.args.get("page"), request.args.get("limit"))
    filters = ScanFilter.from_query(request.args)
    records, total = scans.list(account.id, filters, page, limit)
    return {
      "records": [record.to_public_dict(blobs.access_path) for record in records],
      "pagination": {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": page_count(total, limit),
      },
    }, 200

  @app.route("/api/scan/<scan_id>", methods=["GET"])
  def get_scan(scan_id: str) -> Tuple[Dict[str, Any], int]:
    account = _get_request_account()
    record = scans.get(account.id, scan_id)
    return {"record": record.to_public_dict(blobs.access_path)}, 200

  @app.route("/api/scan/<scan_id>", methods=["DELETE"])
  def delete_scan(scan_id: str) -> Tuple[Dict[str, Any], int]:
    account = _get_request_account()
    service.delete_scan(account.id, scan_id)
    return {"deleted": scan_id, "message": "Scan deleted successfully."}, 200

  # -- user ---------------------------------------------------------------

  @app.route("/api/user/profile", methods=["GET"])
  def get_profile() -> Tuple[Dict[str, Any], int]:
    return {"account": _get_request_account().to_public_dict()}, 200

  @app.route("/api/user/profile", methods=["PUT"])
  def update_profile() -> Tuple[Dict[str, Any], int]:
    account = _get_request_account()
    updated = accounts.update_profile(account.id, _json_body().get("name"))
    return {"account": updated.to_public_dict()}, 200

  @app.route("/api/user/stats", methods=["GET"])
  def user_stats() -> Tuple[Dict[str, Any], int]:
    account = _get_request_account()
    return {"stats": scans.stats(account.id)}, 200

  @app.route("/api/user/account", methods=["DELETE"])
  def delete_account() -> Tuple[Dict[str, Any], int]:
    account = _get_request_account()
    password = _password_from(_json_body())
    if not password:
      raise InvalidInput("Password is required to delete account.")
    removed = service.delete_account(account.id, password)
    return {"message": "Account deleted successfully.", "deletedScans": removed}, 200

  @app.route("/api/health", methods=["GET"])
  def health() -> Tuple[Dict[str, str], int]:
    """Simple health-check endpoint."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}, 200

  if isinstance(blobs, LocalBlobStore):
    @app.route("/uploads/<path:filename>", methods=["GET"])
    def serve_upload(filename: str):
      """Serve locally stored uploads during development."""
      return send_from_directory(blobs.root, filename)

  return app


if __name__ == "__main__":
  flask_app = create_app()
  logging.basicConfig(
    level=flask_app.config["LOG_LEVEL"],
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
  )
  flask_app.run(host="0.0.0.0", port=5000, debug=True)

"""
Error taxonomy shared by the stores, the scan service and the HTTP layer.

Each error carries a stable ``kind`` that clients can match on, a human
readable message and the HTTP status the gateway renders it with.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ScanServiceError(Exception):
  """Base class for every error the service reports to a client."""

  kind = "InternalError"
  status_code = 500
  default_message = "Internal server error."

  def __init__(self, message: Optional[str] = None) -> None:
    self.message = message or self.default_message
    super().__init__(self.message)

  def to_dict(self) -> Dict[str, Any]:
    return {"error": self.kind, "message": self.message}


class InvalidInput(ScanServiceError):
  """Raised when a request body or query parameter is malformed."""

  kind = "InvalidInput"
  status_code = 400
  default_message = "Invalid input."


class InvalidCredentials(ScanServiceError):
  """Raised for an unknown email or a wrong password, indistinguishably."""

  kind = "InvalidCredentials"
  status_code = 401
  default_message = "Invalid email or password."


class Unauthenticated(ScanServiceError):
  kind = "Unauthenticated"
  status_code = 401
  default_message = "Authorization header missing or invalid."


class TokenExpired(Unauthenticated):
  default_message = "Token has expired."


class TokenInvalid(Unauthenticated):
  default_message = "Token is invalid."


class NotFound(ScanServiceError):
  """Raised for missing resources and for resources owned by someone else."""

  kind = "NotFound"
  status_code = 404
  default_message = "Not found."


class DuplicateAccount(ScanServiceError):
  kind = "DuplicateAccount"
  status_code = 409
  default_message = "Email is already registered."


class PayloadTooLarge(ScanServiceError):
  kind = "PayloadTooLarge"
  status_code = 400
  default_message = "File size too large. Maximum size is 10MB."


class UnsupportedType(ScanServiceError):
  kind = "UnsupportedType"
  status_code = 400
  default_message = "Invalid file type. Only JPEG, PNG, WebP images and PDF files are allowed."


class AnalysisFailed(ScanServiceError):
  """Raised when the analysis provider cannot produce a result."""

  kind = "AnalysisFailed"
  status_code = 500
  default_message = "Food analysis failed."


class InternalError(ScanServiceError):
  pass


__all__ = [
  "AnalysisFailed",
  "DuplicateAccount",
  "InternalError",
  "InvalidCredentials",
  "InvalidInput",
  "NotFound",
  "PayloadTooLarge",
  "ScanServiceError",
  "TokenExpired",
  "TokenInvalid",
  "Unauthenticated",
  "UnsupportedType",
]

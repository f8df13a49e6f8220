# errors.py
from typing import Any, Dict, Optional


class BridgeError(Exception):
  """Base error for a request that must stop with an HTTP error response."""

  status_code = 500

  def __init__(self, message: str, status_code: Optional[int] = None, extra: Optional[Dict[str, Any]] = None):
    super().__init__(message)
    self.message = message
    if status_code is not None:
      self.status_code = status_code
    self.extra = extra or {}


class InvalidInput(BridgeError):
  status_code = 400


class Unauthorized(BridgeError):
  status_code = 401


class NotFound(BridgeError):
  status_code = 404


class UpstreamError(BridgeError):
  status_code = 500


class InvoiceNotOpen(BridgeError):
  status_code = 500

  def __init__(self, status: Optional[str]):
    super().__init__(f"Invoice is not open (status: {status})")
    self.status = status

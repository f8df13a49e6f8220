# formatting.py
import re
from typing import Any, Dict, Optional

STATUS_LABELS = {
  "draft": "Rascunho",
  "open": "Em Aberto",
  "paid": "Paga",
  "uncollectible": "Não Cobrável",
  "void": "Cancelada",
}

STATUS_COLORS = {
  "draft": "#6c757d",
  "open": "#ffc107",
  "paid": "#00d4aa",
  "uncollectible": "#dc3545",
  "void": "#6c757d",
}

DEFAULT_PHONE = "(11) 99999-9999"

_EMPTY = (None, "", [], {})


def first_present(data: Any, *paths: str) -> Any:
  """Return the first non-empty value found under any of the dotted paths.

  Paths are tried in order; numeric segments index into lists, so
  ``"items.data.0.id"`` reads the first item's id.
  """
  for path in paths:
    value = data
    for key in path.split("."):
      if isinstance(value, dict):
        value = value.get(key)
      elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
        value = value[int(key)]
      else:
        value = None
        break
    if value not in _EMPTY:
      return value
  return None


def normalize_email(email: Optional[str]) -> Optional[str]:
  if not email or "@" not in email:
    return None
  return email.strip().lower()


def digits(value: Optional[str]) -> str:
  return re.sub(r"\D", "", value or "")


def format_cpf(cpf: str) -> str:
  return f"{cpf[0:3]}.{cpf[3:6]}.{cpf[6:9]}-{cpf[9:11]}"


def mask_cpf(cpf: str) -> str:
  return f"{cpf[0:3]}.***.***-{cpf[9:11]}"


def format_phone(phone: Optional[str]) -> str:
  clean = digits(phone)
  if len(clean) < 10:
    return DEFAULT_PHONE
  return f"({clean[0:2]}) {clean[2:7]}-{clean[7:11]}"


def format_brl(cents: int) -> str:
  """Format an amount in centavos the way pt-BR shows currency: ``R$ 1.234,56``, with a non-breaking space after the symbol."""
  text = f"{cents / 100:,.2f}"
  return "R$\u00a0" + text.replace(",", "_").replace(".", ",").replace("_", ".")


def status_label(status: Optional[str]) -> Optional[str]:
  return STATUS_LABELS.get(status or "", status)


def status_color(status: Optional[str]) -> str:
  return STATUS_COLORS.get(status or "", "#6c757d")


def object_id(ref: Any) -> Optional[str]:
  # Stripe returns either an id or the expanded object
  if isinstance(ref, dict):
    return ref.get("id")
  return ref or None


def metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
  return obj.get("metadata") or {}

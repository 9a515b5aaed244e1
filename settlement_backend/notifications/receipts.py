# notifications/receipts.py

"""
RECEIPT DELIVERY

send_receipt(phone_number, invoice_snapshot, outlet_snapshot) is the contract
the settlement core depends on. The default sender posts a text receipt to
the WhatsApp Cloud API.

Config (settings.WHATSAPP):
- API_URL          e.g. https://graph.facebook.com/v21.0
- PHONE_NUMBER_ID
- ACCESS_TOKEN
- TIMEOUT_SECONDS
- DEFAULT_COUNTRY_CODE  prefixed to bare 10-digit numbers

Unconfigured credentials and undialable phone numbers are not errors: the
receipt is skipped with a warning so the outbox row does not retry forever.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger("notifications")

DEFAULT_SENDER = "notifications.receipts.WhatsAppReceiptSender"
DEFAULT_API_URL = "https://graph.facebook.com/v21.0"


class ReceiptDeliveryError(RuntimeError):
    pass


class ReceiptSender:
    def send_receipt(self, phone_number: str, invoice_snapshot: dict, outlet_snapshot: dict) -> dict:
        raise NotImplementedError


def _whatsapp_cfg() -> dict:
    cfg = getattr(settings, "WHATSAPP", {}) or {}
    return cfg if isinstance(cfg, dict) else {}


def normalize_phone(phone: str | None, *, country_code: str = "") -> str:
    digits = re.sub(r"[\s\-().]", "", str(phone or ""))
    if digits.startswith("+"):
        digits = digits[1:]
    if country_code and re.fullmatch(r"\d{10}", digits):
        digits = f"{country_code}{digits}"
    if not re.fullmatch(r"\d{8,15}", digits):
        return ""
    return digits


def render_receipt_text(invoice_snapshot: dict, outlet_snapshot: dict) -> str:
    lines = [
        outlet_snapshot.get("name") or "Receipt",
        f"Invoice: {invoice_snapshot.get('invoice_number', '')}",
    ]
    if invoice_snapshot.get("customer_name"):
        lines.append(f"Customer: {invoice_snapshot['customer_name']}")
    lines.append(f"Total: {invoice_snapshot.get('grand_total', '0.00')}")
    lines.append(f"Status: {invoice_snapshot.get('payment_status', '')}")
    lines.append("Thank you for dining with us!")
    return "\n".join(lines)


def _parse_json(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw or "{}")
    except ValueError:
        return {"raw": raw}
    return parsed if isinstance(parsed, dict) else {"raw": parsed}


class WhatsAppReceiptSender(ReceiptSender):
    def __init__(self, cfg: dict | None = None):
        cfg = cfg if cfg is not None else _whatsapp_cfg()
        self.api_url = (cfg.get("API_URL") or DEFAULT_API_URL).rstrip("/")
        self.phone_number_id = (cfg.get("PHONE_NUMBER_ID") or "").strip()
        self.access_token = (cfg.get("ACCESS_TOKEN") or "").strip()
        self.timeout = float(cfg.get("TIMEOUT_SECONDS") or 10)
        self.country_code = (cfg.get("DEFAULT_COUNTRY_CODE") or "").strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    def _post(self, body: dict) -> dict:
        req = Request(
            f"{self.api_url}/{self.phone_number_id}/messages",
            data=json.dumps(body, ensure_ascii=False).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                return _parse_json(resp.read().decode("utf-8", errors="replace"))
        except HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace") if e.fp else ""
            error = _parse_json(raw).get("error")
            msg = error.get("message") if isinstance(error, dict) else raw[:300]
            raise ReceiptDeliveryError(f"WhatsApp HTTPError: {e.code} {msg}") from e
        except URLError as e:
            raise ReceiptDeliveryError(f"WhatsApp URLError: {e}") from e

    def send_receipt(self, phone_number: str, invoice_snapshot: dict, outlet_snapshot: dict) -> dict:
        if not self.is_configured:
            logger.warning(
                "WhatsApp credentials not configured, receipt skipped",
                extra={"invoice_id": invoice_snapshot.get("id")},
            )
            return {"skipped": True, "reason": "not_configured"}

        to = normalize_phone(phone_number, country_code=self.country_code)
        if not to:
            logger.warning(
                "Receipt phone number is not dialable, receipt skipped",
                extra={"invoice_id": invoice_snapshot.get("id"), "phone_number": phone_number},
            )
            return {"skipped": True, "reason": "invalid_phone"}

        result = self._post(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": to,
                "type": "text",
                "text": {
                    "body": render_receipt_text(invoice_snapshot, outlet_snapshot),
                    "preview_url": False,
                },
            }
        )
        message_id = ((result.get("messages") or [{}])[0] or {}).get("id")
        logger.info(
            "Receipt sent",
            extra={"invoice_id": invoice_snapshot.get("id"), "message_id": message_id},
        )
        return {"skipped": False, "message_id": message_id}


def get_receipt_sender() -> ReceiptSender:
    path = getattr(settings, "RECEIPT_SENDER_BACKEND", "") or DEFAULT_SENDER
    return import_string(path)()

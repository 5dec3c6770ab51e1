from __future__ import annotations

from typing import Dict


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "erp_not_connected": "Not connected to the ERP backend.",
        "erp_document_rejected": "The ERP rejected the order document.",
        "erp_temporarily_unavailable": "The ERP is temporarily unavailable. Retries were exhausted.",
        "erp_document_writer_missing": "Document creation is not configured for this ERP connection.",
        "order_has_no_lines": "Order has no lines.",
        "order_line_invalid_quantity": "Order line quantity must be greater than zero.",
        "order_processing_exception": "Unexpected error while processing the order.",
        "remote_unreachable": "Cloud API is not responding.",
        "unexpected_error": "Unexpected error.",
    },
}


def get_message(category: str, key: str, default: str | None = None) -> str:
    bucket = MESSAGES.get(category) or {}
    value = bucket.get(key)
    if value:
        return value
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def with_details(key: str, details: str | None) -> str:
    base = error_message(key)
    detail = str(details or "").strip()
    if not detail or detail == base:
        return base
    return f"{base} {detail}"

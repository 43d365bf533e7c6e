from __future__ import annotations

DEFAULT_VERIFICATION_BASE_URL = "http://localhost:3000"


def verification_url(employee_id: str, base_url: str | None = None) -> str:
    base = str(base_url or "").strip().rstrip("/") or DEFAULT_VERIFICATION_BASE_URL
    return f"{base}/verify/{employee_id}"

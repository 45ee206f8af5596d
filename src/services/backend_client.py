from __future__ import annotations

import sys
from typing import Any, BinaryIO, Dict, List, Optional

import requests

from src.server.schemas.quote import FormKind
from src.server.settings.config import settings

RESOURCE_PATHS: Dict[FormKind, str] = {
    FormKind.QUOTATION: "quotations",
    FormKind.PROJECT: "projects",
    FormKind.INVOICE: "invoices",
}


class ApiError(Exception):
    """
    Fel från backend eller uppladdningstjänst.

    details är listan som backend skickar med, t.ex.
      [{"message": "Client name is required", "path": ["clientName"]}]
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[List[Any]] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = list(details or [])
        self.status = status

    @property
    def messages(self) -> List[str]:
        out = [self.message]
        for d in self.details:
            if isinstance(d, dict) and d.get("message"):
                out.append(str(d["message"]))
            elif isinstance(d, str) and d.strip():
                out.append(d)
        return out

    @property
    def field_errors(self) -> Dict[str, str]:
        """Detaljer som pekar ut ett fält, som {fältväg: meddelande}."""
        errors: Dict[str, str] = {}
        for d in self.details:
            if not isinstance(d, dict) or not d.get("message"):
                continue
            path = d.get("path")
            if isinstance(path, (list, tuple)) and path:
                errors[".".join(str(p) for p in path)] = str(d["message"])
            elif isinstance(path, str) and path:
                errors[path] = str(d["message"])
        return errors


def _error_from_response(resp: Any, fallback: str) -> ApiError:
    try:
        body = resp.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        message = str(body.get("error") or fallback)
        details = body.get("details")
        if not isinstance(details, list):
            details = None
        return ApiError(message, details=details, status=resp.status_code)

    return ApiError(fallback, status=resp.status_code)


class _HttpClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        session: Any = None,
    ) -> None:
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self.timeout = settings.backend_timeout_seconds if timeout is None else timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, *, fallback_error: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            print(f"[backend_client] nätverksfel {method} {url}: {e}", file=sys.stderr)
            raise ApiError(f"Network error: {e}") from e

        if not 200 <= resp.status_code < 300:
            print(f"[backend_client] API ERROR {resp.status_code} {method} {url}", file=sys.stderr)
            raise _error_from_response(resp, fallback_error)

        try:
            data = resp.json()
        except ValueError:
            raise ApiError("Invalid JSON in backend response", status=resp.status_code) from None

        if not isinstance(data, dict):
            raise ApiError("Unexpected backend response", status=resp.status_code)
        return data


class BackendClient(_HttpClient):
    """
    Klient mot backendens REST-endpoints:

      POST /quotations            PUT /quotations/{quotationNumber}
      POST /projects              PUT /projects/{projectId}
      POST /invoices              PUT /invoices/{invoiceId}
    """

    def create(self, kind: FormKind, payload: Dict[str, Any]) -> Dict[str, Any]:
        kind = FormKind(kind)
        return self._request(
            "POST",
            RESOURCE_PATHS[kind],
            json=payload,
            fallback_error=f"Failed to create {kind.value}",
        )

    def update(self, kind: FormKind, record_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        kind = FormKind(kind)
        return self._request(
            "PUT",
            f"{RESOURCE_PATHS[kind]}/{record_id}",
            json=payload,
            fallback_error=f"Failed to update {kind.value}",
        )


class UploadClient(_HttpClient):
    """
    Laddar upp en fil och får tillbaka {"url": ..., "publicId": ...}.
    Filens innehåll tolkas aldrig här.
    """

    def upload(self, file: BinaryIO, *, filename: Optional[str] = None) -> Dict[str, str]:
        name = filename or getattr(file, "name", None) or "upload"
        data = self._request(
            "POST",
            "uploads",
            files={"file": (str(name), file)},
            fallback_error="Failed to upload file",
        )

        url = data.get("url")
        public_id = data.get("publicId")
        if not url or not public_id:
            raise ApiError("Upload response is missing url or publicId")
        return {"url": str(url), "publicId": str(public_id)}

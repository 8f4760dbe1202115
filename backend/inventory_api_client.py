"""
inventory_api_client.py

A small synchronous client for the Stockroom backend, for bots and scripts.

What it provides:
- JWT login + authenticated requests (re-login once on 401)
- Helpers for the day-to-day inventory calls:
  - stock adjustments (sale / giveaway / transfer / restock / adjustment)
  - assignments (assign to a person or a location, revoke)
  - location requests
  - invitations (admin-only)

Environment variables expected:
- STOCKROOM_API_URL: e.g. "https://your-domain.com/api"
- STOCKROOM_API_EMAIL: the bot user's email (must exist in backend)
- STOCKROOM_API_PASSWORD: the bot user's password

Optional:
- STOCKROOM_API_TOKEN: if you want to pre-seed a token (otherwise we login)

Dependencies:
- requests (pip install requests)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests


class ApiError(RuntimeError):
    """A non-2xx answer. `code` is the ledger error code when the backend sent one."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.context = context or {}

    @classmethod
    def from_response(cls, method: str, path: str, resp: requests.Response) -> "ApiError":
        detail: Any = resp.text
        code = None
        context: Dict[str, Any] = {}
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("detail", detail)
            code = body.get("code")
            context = body.get("context") or {}
        return cls(
            f"{method} {path} failed ({resp.status_code}): {detail}",
            status_code=resp.status_code,
            code=code,
            context=context,
        )


@dataclass
class StockroomApiClient:
    base_url: str
    email: str
    password: str
    token: Optional[str] = None
    timeout: int = 60

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def login(self) -> str:
        """
        FastAPI-Users JWT login endpoint.
        The backend uses: POST /auth/jwt/login with form fields: username, password
        """
        resp = requests.post(
            self._url("/auth/jwt/login"),
            data={"username": self.email, "password": self.password},
            headers={"Accept": "application/json"},
            timeout=30,
        )
        if resp.status_code >= 400:
            raise ApiError(f"Login failed ({resp.status_code}): {resp.text}", status_code=resp.status_code)
        data = resp.json()
        token = data.get("access_token")
        if not token:
            raise ApiError(f"Login response missing access_token: {data}")
        self.token = token
        return token

    def _request(self, method: str, path: str, *, json: Any = None, params: Dict[str, Any] | None = None) -> Any:
        if not self.token:
            self.login()

        resp = requests.request(
            method, self._url(path), json=json, params=params, headers=self._headers(), timeout=self.timeout
        )

        # Token expired: retry once with a fresh login. 403 is a real refusal here.
        if resp.status_code == 401:
            self.login()
            resp = requests.request(
                method, self._url(path), json=json, params=params, headers=self._headers(), timeout=self.timeout
            )

        if resp.status_code >= 400:
            raise ApiError.from_response(method, path, resp)

        if resp.status_code == 204:
            return None
        return resp.json()

    # ----------------------------
    # Stock ledger
    # ----------------------------

    def adjust(
        self,
        item_id: str,
        *,
        action: str,  # "sale" | "giveaway" | "transfer" | "restock" | "adjustment"
        quantity: int,
        direction: Optional[str] = None,  # "increase" | "decrease", required for "adjustment"
        location_id: Optional[str] = None,
        location_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Any:
        """
        Calls: POST /inventory/items/{item_id}/adjustments

        The answer carries the new item quantity, the ledger entry and any
        warnings (e.g. the location assignment could not be updated yet).
        """
        payload = {
            "action": action,
            "quantity": quantity,
            "direction": direction,
            "location_id": location_id,
            "location_name": location_name,
            "notes": notes,
        }
        return self._request("POST", f"/inventory/items/{item_id}/adjustments", json=payload)

    def history(self, item_id: str, *, limit: int = 100) -> Any:
        return self._request("GET", f"/inventory/items/{item_id}/history", params={"limit": limit})

    # ----------------------------
    # Assignments (admin-only writes)
    # ----------------------------

    def assign(
        self,
        item_id: str,
        *,
        user_id: Optional[str] = None,
        location_id: Optional[str] = None,
        quantity: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Any:
        """Calls: POST /assignments/items/{item_id}. Give exactly one of user_id / location_id."""
        payload = {"user_id": user_id, "location_id": location_id, "quantity": quantity, "notes": notes}
        return self._request("POST", f"/assignments/items/{item_id}", json=payload)

    def revoke(self, assignment_id: str) -> Any:
        return self._request("POST", f"/assignments/{assignment_id}/revoke")

    # ----------------------------
    # Location requests
    # ----------------------------

    def submit_request(self, *, location_id: str, item_id: str, quantity: int, notes: Optional[str] = None) -> Any:
        payload = {"location_id": location_id, "item_id": item_id, "quantity": quantity, "notes": notes}
        return self._request("POST", "/requests/", json=payload)

    # ----------------------------
    # Invitations (admin-only)
    # ----------------------------

    def invite(self, emails: List[str]) -> Any:
        """Calls: POST /invites. At most 10 addresses per call (server setting)."""
        return self._request("POST", "/invites", json={"emails": emails})


def make_client_from_env() -> StockroomApiClient:
    base_url = os.getenv("STOCKROOM_API_URL", "").strip()
    email = os.getenv("STOCKROOM_API_EMAIL", "").strip()
    password = os.getenv("STOCKROOM_API_PASSWORD", "").strip()
    token = os.getenv("STOCKROOM_API_TOKEN", "").strip() or None

    if not base_url:
        raise RuntimeError("Missing STOCKROOM_API_URL")
    if not email:
        raise RuntimeError("Missing STOCKROOM_API_EMAIL")
    if not password:
        raise RuntimeError("Missing STOCKROOM_API_PASSWORD")

    return StockroomApiClient(base_url=base_url, email=email, password=password, token=token)


if __name__ == "__main__":
    client = make_client_from_env()

    # Example: record a sale of 2 units through a managed location
    # client.adjust(
    #     "00000000-0000-0000-0000-000000000000",
    #     action="sale",
    #     quantity=2,
    #     location_id="00000000-0000-0000-0000-000000000000",
    #     notes="sold at the front desk",
    # )

    print("OK: client configured. Uncomment examples to run.")

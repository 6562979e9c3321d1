# ---------------------------------------------------------------------------
# client.py
#
# HTTP client for the continuum voting API.
#
# Everything the admin console, the login page and the participant page do is
# a call on `ApiClient`. The client holds the base URL and (after login) the
# bearer token; non-2xx responses raise `ApiError` carrying the server's
# `error` message.
# ---------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} (HTTP {self.status_code})"


class ApiClient:
    """Thin wrapper over the JSON API.

    `session` may be any requests-compatible object (e.g. `requests.Session`);
    it only needs `.request(method, url, json=..., headers=..., timeout=...)`.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        session: Any = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    # -- plumbing ----------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _send(self, method: str, path: str, body: Optional[dict] = None):
        resp = self.session.request(
            method,
            f"{self.base_url}/api{path}",
            json=body,
            headers=self._headers(),
            timeout=self.timeout,
        )
        if resp.status_code >= 400:
            try:
                message = resp.json().get("error") or "Failed"
            except ValueError:
                message = "Failed"
            raise ApiError(resp.status_code, message)
        return resp

    def _json(self, method: str, path: str, body: Optional[dict] = None) -> Any:
        return self._send(method, path, body).json()

    # -- login page --------------------------------------------------------

    def register(self, email: str, password: str) -> str:
        self.token = self._json("POST", "/auth/register", {"email": email, "password": password})["token"]
        return self.token

    def login(self, email: str, password: str) -> str:
        self.token = self._json("POST", "/auth/login", {"email": email, "password": password})["token"]
        return self.token

    def me(self) -> dict:
        return self._json("GET", "/auth/me")

    # -- admin console -----------------------------------------------------

    def projects(self) -> List[dict]:
        return self._json("GET", "/projects")

    def create_project(self, name: str, min_value: int = -5, max_value: int = 5) -> dict:
        return self._json("POST", "/projects", {"name": name, "minValue": min_value, "maxValue": max_value})

    def delete_project(self, project_id: str) -> dict:
        return self._json("DELETE", f"/projects/{project_id}")

    def continuums(self, project_id: str) -> List[dict]:
        return self._json("GET", f"/projects/{project_id}/continuums")

    def create_continuum(
        self,
        project_id: str,
        title: str,
        left_aim: str = "",
        right_aim: str = "",
        left_desc: str = "",
        right_desc: str = "",
    ) -> dict:
        body = {
            "title": title,
            "leftAim": left_aim,
            "rightAim": right_aim,
            "leftDesc": left_desc,
            "rightDesc": right_desc,
        }
        return self._json("POST", f"/projects/{project_id}/continuums", body)

    def update_continuum(self, continuum_id: str, **fields: Any) -> dict:
        return self._json("PUT", f"/continuums/{continuum_id}", fields)

    def set_continuum_hidden(self, continuum_id: str, hidden: bool) -> dict:
        return self.update_continuum(continuum_id, isHidden=hidden)

    def delete_continuum(self, continuum_id: str) -> dict:
        return self._json("DELETE", f"/continuums/{continuum_id}")

    def sessions(self, project_id: str) -> List[dict]:
        return self._json("GET", f"/projects/{project_id}/sessions")

    def create_session(self, project_id: str, session_type: str) -> dict:
        return self._json("POST", f"/projects/{project_id}/sessions", {"type": session_type})

    def set_session_status(self, session_id: str, status: str) -> dict:
        return self._json("PUT", f"/sessions/{session_id}/status", {"status": status})

    def invite(self, session_id: str, email: str) -> dict:
        return self._json("POST", f"/sessions/{session_id}/invite", {"email": email})

    def participants(self, session_id: str) -> List[dict]:
        return self._json("GET", f"/sessions/{session_id}/participants")

    def results(self, session_id: str) -> dict:
        return self._json("GET", f"/sessions/{session_id}/results")

    def export_csv(self, session_id: str) -> str:
        return self._send("GET", f"/sessions/{session_id}/export.csv").text

    # -- participant page --------------------------------------------------

    def invite_details(self, token: str) -> dict:
        return self._json("GET", f"/public/invite/{token}")

    def join(self, token: str, name: str, email: Optional[str] = None) -> str:
        data = self._json("POST", f"/public/invite/{token}/join", {"name": name, "email": email})
        return data["participantId"]

    def submit(self, token: str, participant_id: str, votes: Dict[str, Any]) -> dict:
        payload = [{"continuumId": cid, "value": value} for cid, value in votes.items()]
        return self._json(
            "POST",
            f"/public/invite/{token}/submit",
            {"participantId": participant_id, "votes": payload},
        )

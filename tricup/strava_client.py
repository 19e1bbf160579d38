from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from .config_loader import CONFIG_FILES, config_value, load_json_config


STRAVA_OAUTH_AUTHORIZE = "https://www.strava.com/oauth/authorize"
STRAVA_OAUTH_TOKEN = "https://www.strava.com/oauth/token"
STRAVA_API_BASE = "https://www.strava.com/api/v3"

DEFAULT_REDIRECT_URI = "http://localhost:3000/auth/strava/callback"
DEFAULT_SCOPE = "activity:read_all,profile:read_all"
REQUEST_TIMEOUT = 30


class StravaAPIError(RuntimeError):
    """
    Raised when Strava returns an error response.
    """


class StravaClient:
    """
    Minimal Strava API client that supports OAuth token exchange/refresh
    and listing athlete activities inside a time window.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
    ) -> None:
        config = load_json_config(*CONFIG_FILES)

        self.client_id = client_id or config_value(
            "STRAVA_CLIENT_ID", "client_id", config=config
        )
        self.client_secret = client_secret or config_value(
            "STRAVA_CLIENT_SECRET", "client_secret", config=config
        )
        self.redirect_uri = redirect_uri or config_value(
            "STRAVA_REDIRECT_URI",
            "redirect_uri",
            DEFAULT_REDIRECT_URI,
            config=config,
        )

    # ---------- configuration helpers ----------

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def _require_config(self) -> None:
        if not self.is_configured():
            raise RuntimeError(
                "Strava is not configured. Please set STRAVA_CLIENT_ID "
                "and STRAVA_CLIENT_SECRET."
            )

    # ---------- OAuth helpers ----------

    def build_authorize_url(
        self,
        scope: str = DEFAULT_SCOPE,
        state: Optional[str] = None,
    ) -> str:
        self._require_config()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": scope,
        }
        if state:
            params["state"] = state
        return f"{STRAVA_OAUTH_AUTHORIZE}?{urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> Dict[str, Any]:
        self._require_config()
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
        }
        return self._request_token(payload)

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        self._require_config()
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return self._request_token(payload)

    def _request_token(self, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = requests.post(STRAVA_OAUTH_TOKEN, data=data, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as exc:
            raise StravaAPIError(f"Strava token request failed: {exc}") from exc
        if resp.status_code != 200:
            raise StravaAPIError(
                f"Strava token request failed: {resp.status_code} {resp.text}"
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise StravaAPIError("Strava token response is not JSON") from exc

    # ---------- Activities ----------

    def list_activities(
        self,
        access_token: str,
        after: Optional[int] = None,
        before: Optional[int] = None,
        per_page: int = 100,
        page: int = 1,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "per_page": per_page,
            "page": page,
        }
        if after is not None:
            params["after"] = after
        if before is not None:
            params["before"] = before

        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            resp = requests.get(
                f"{STRAVA_API_BASE}/athlete/activities",
                headers=headers,
                params=params,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise StravaAPIError(f"Strava activities request failed: {exc}") from exc
        if resp.status_code != 200:
            raise StravaAPIError(
                f"Strava activities request failed: {resp.status_code} {resp.text}"
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise StravaAPIError("Strava activities response is not JSON") from exc
        if not isinstance(data, list):
            raise StravaAPIError("Unexpected Strava activities payload")
        return data

    def list_window_activities(
        self,
        access_token: str,
        after: int,
        before: int,
        per_page: int = 100,
        max_pages: int = 4,
    ) -> List[Dict[str, Any]]:
        """
        Collect every activity between ``after`` and ``before``, following
        pages while Strava keeps returning full pages.
        """
        activities: List[Dict[str, Any]] = []
        for page in range(1, max_pages + 1):
            batch = self.list_activities(
                access_token,
                after=after,
                before=before,
                per_page=per_page,
                page=page,
            )
            activities.extend(batch)
            if len(batch) < per_page:
                break
        return activities

"""mod.io REST API client."""

import logging
import time
from typing import Any

import requests

from .catalog import FileDescriptor, RemoteCatalogEntry

DEFAULT_BASE_URL = "https://api.mod.io/v1"
USER_AGENT = "bonelab-mod-manager/0.2.0"
PAGE_LIMIT = 100
REQUEST_TIMEOUT = 30

# mod.io error_ref for "already subscribed to the requested mod"
ERROR_REF_ALREADY_SUBSCRIBED = 15004

logger = logging.getLogger(__name__)


class ModioAPIError(Exception):
    """Base exception for mod.io API errors."""

    def __init__(self, message: str, status_code: int | None = None, error_ref: int | None = None):
        self.status_code = status_code
        self.error_ref = error_ref
        super().__init__(message)


class ModioAuthError(ModioAPIError):
    """Raised when the API key, access token or security code is rejected."""

    pass


class ModioRateLimited(ModioAPIError):
    """Raised when rate limited by the API."""

    def __init__(self, retry_after: int = 60):
        self.retry_after = retry_after
        super().__init__(f"Rate limited. Retry after {retry_after} seconds.", status_code=429)


class ModioAPI:
    """Client for the subset of mod.io used to keep a mod folder in sync."""

    def __init__(
        self,
        api_key: str,
        access_token: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
    ):
        if not api_key:
            raise ModioAuthError("No mod.io API key provided.")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            }
        )
        self.access_token: str | None = None
        if access_token:
            self.set_token(access_token)
        self._last_request_time = 0.0
        self._min_request_interval = 0.25

    def set_token(self, token: str) -> None:
        """Use an OAuth access token for every following request."""
        self.access_token = token.strip()
        self.session.headers["Authorization"] = f"Bearer {self.access_token}"

    def _rate_limit_wait(self) -> None:
        """Ensure we don't hammer the API between calls."""
        elapsed = time.time() - self._last_request_time
        if elapsed < self._min_request_interval:
            time.sleep(self._min_request_interval - elapsed)
        self._last_request_time = time.time()

    def _handle_response(self, response: requests.Response) -> dict[str, Any]:
        """Turn an HTTP response into JSON or a classified exception."""
        if response.status_code == 429:
            retry_after = response.headers.get("retry-after", "60")
            raise ModioRateLimited(int(retry_after) if retry_after.isdigit() else 60)
        if response.status_code == 204:
            return {}
        if response.ok:
            return response.json() if response.content else {}

        message = response.reason or "request failed"
        error_ref = None
        try:
            error = response.json().get("error", {})
            message = error.get("message", message)
            error_ref = error.get("error_ref")
        except ValueError:
            pass
        if response.status_code in (401, 403):
            raise ModioAuthError(
                f"Not authorized ({response.status_code}): {message}",
                status_code=response.status_code,
                error_ref=error_ref,
            )
        raise ModioAPIError(
            f"{response.status_code} {message} ({response.url})",
            status_code=response.status_code,
            error_ref=error_ref,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        self._rate_limit_wait()
        params = kwargs.pop("params", None) or {}
        if not self.access_token:
            params.setdefault("api_key", self.api_key)
        url = f"{self.base_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(
                method, url, params=params, timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.RequestException as e:
            raise ModioAPIError(f"Request to {url} failed: {e}") from e
        return self._handle_response(response)

    def _collect(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Follow ``_offset`` pagination and return every ``data`` item."""
        items: list[dict[str, Any]] = []
        offset = 0
        while True:
            page = self._request(
                "GET", path, params={**params, "_limit": PAGE_LIMIT, "_offset": offset}
            )
            data = page.get("data", [])
            items.extend(data)
            offset += len(data)
            total = page.get("result_total", offset)
            if not data or offset >= total:
                return items

    # -- authentication --

    def request_code(self, email: str) -> None:
        """Ask mod.io to email a one-time security code."""
        self._request(
            "POST",
            "/oauth/emailrequest",
            params={"api_key": self.api_key},
            data={"email": email},
        )

    def exchange_code(self, security_code: str) -> str:
        """Exchange an emailed security code for an access token."""
        data = self._request(
            "POST",
            "/oauth/emailexchange",
            params={"api_key": self.api_key},
            data={"security_code": security_code.strip()},
        )
        token = data.get("access_token")
        if not token:
            raise ModioAuthError("mod.io did not return an access token.")
        self.set_token(token)
        return token

    def current_user(self) -> dict[str, Any]:
        """Return the authenticated user."""
        return self._request("GET", "/me")

    # -- catalog --

    def get_subscriptions(self, game_id: int) -> list[RemoteCatalogEntry]:
        """All mods the user is subscribed to for one game, sorted by name."""
        data = self._collect("/me/subscribed", {"game_id": game_id, "_sort": "name"})
        return [RemoteCatalogEntry.from_api(item) for item in data]

    def subscribe(self, game_id: int, mod_id: int) -> None:
        """Subscribe the user to a mod. Subscribing twice is not an error."""
        try:
            self._request("POST", f"/games/{game_id}/mods/{mod_id}/subscribe")
        except ModioAPIError as e:
            if isinstance(e, ModioRateLimited) or e.error_ref != ERROR_REF_ALREADY_SUBSCRIBED:
                raise
            logger.debug("Already subscribed to mod %s", mod_id)

    def get_mod(self, game_id: int, mod_id: int) -> RemoteCatalogEntry:
        """Get one mod with its currently attached modfile."""
        return RemoteCatalogEntry.from_api(
            self._request("GET", f"/games/{game_id}/mods/{mod_id}")
        )

    def get_files(self, game_id: int, mod_id: int) -> list[FileDescriptor]:
        """Every modfile of a mod, lowest file id first."""
        data = self._collect(f"/games/{game_id}/mods/{mod_id}/files", {"_sort": "id"})
        return sorted((FileDescriptor.from_api(item) for item in data), key=lambda f: f.id)

    def open_download(self, url: str) -> requests.Response:
        """Start a streaming download of a modfile binary."""
        self._rate_limit_wait()
        try:
            response = self.session.get(url, stream=True, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise ModioAPIError(f"Download from {url} failed: {e}") from e
        if not response.ok:
            try:
                self._handle_response(response)
            finally:
                response.close()
        return response

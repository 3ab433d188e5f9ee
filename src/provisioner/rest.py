"""Thin JSON REST client on the azure-core pipeline.

Both the directory graph and the CI/CD platform are plain JSON REST APIs with
bearer tokens. They share one pipeline shape: a bearer token policy for a
single fixed scope, JSON headers, a user agent and HTTP logging. There is no
retry policy; a failed call fails the step.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol
from urllib.parse import quote, urlencode

from azure.core import PipelineClient
from azure.core.credentials import TokenCredential
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.core.pipeline.policies import (
    BearerTokenCredentialPolicy,
    HeadersPolicy,
    HttpLoggingPolicy,
    UserAgentPolicy,
)
from azure.core.rest import HttpRequest

logger = logging.getLogger(__name__)

USER_AGENT = "devops-federation-provisioner/0.1.0"
JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}

# Bound on paginated reads (nextLink chains); a longer chain is an error
MAX_PAGES = 50


class SupportsSendRequest(Protocol):
    """The part of PipelineClient the REST client relies on."""

    def send_request(self, request: HttpRequest, **kwargs: Any) -> Any: ...


def build_pipeline_client(
    credential: TokenCredential,
    scope: str,
    base_url: str,
) -> PipelineClient:
    """Build a pipeline client authenticating every call for ``scope``."""
    return PipelineClient(
        base_url=base_url,
        policies=[
            HeadersPolicy(JSON_HEADERS),
            UserAgentPolicy(base_user_agent=USER_AGENT),
            BearerTokenCredentialPolicy(credential, scope),
            HttpLoggingPolicy(),
        ],
    )


def _error_message(response: Any) -> str:
    """Extract the platform error message from a failed response."""
    try:
        body = json.loads(response.text() or "{}")
    except ValueError:
        body = {}

    if isinstance(body, dict):
        # Graph: {"error": {"code": ..., "message": ...}}
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            code = error.get("code")
            return f"{code}: {error['message']}" if code else str(error["message"])
        # CI/CD platform: {"message": ..., "typeKey": ...}
        if body.get("message"):
            type_key = body.get("typeKey")
            return f"{type_key}: {body['message']}" if type_key else str(body["message"])

    return f"HTTP {response.status_code} {response.reason or ''}".strip()


def raise_for_status(response: Any) -> None:
    """Map an error response onto the azure-core exception hierarchy."""
    status = response.status_code
    if status < 400:
        return

    message = _error_message(response)
    if status == 404:
        raise ResourceNotFoundError(message=message, response=response)
    if status in (401, 403):
        raise ClientAuthenticationError(message=message, response=response)
    if status == 409:
        raise ResourceExistsError(message=message, response=response)
    raise HttpResponseError(message=message, response=response)


def decode_json(response: Any) -> Any:
    """Decode a successful response body, tolerating empty bodies."""
    text = response.text()
    if response.status_code == 204 or not text or not text.strip():
        return None

    content_type = (response.headers.get("Content-Type") or "").lower()
    if content_type and "json" not in content_type:
        # The CI/CD platform answers an unauthenticated call with a 203 and an
        # HTML sign-in page instead of a 401
        raise ClientAuthenticationError(
            message=(
                f"Expected a JSON response but received '{content_type}' "
                f"(HTTP {response.status_code}); the access token was probably rejected"
            ),
        )

    try:
        return json.loads(text)
    except ValueError as e:
        raise HttpResponseError(message=f"Invalid JSON in response: {e}") from e


class RestClient:
    """JSON REST client for one API base URL and one token scope."""

    def __init__(
        self,
        credential: TokenCredential | None,
        scope: str,
        base_url: str,
        *,
        pipeline_client: SupportsSendRequest | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            credential: Session credential used for bearer tokens.
            scope: Token scope for every request.
            base_url: API base URL; relative paths are joined onto it.
            pipeline_client: Pre-built client (tests inject a recording fake).
        """
        self._base_url = base_url.rstrip("/")
        if pipeline_client is not None:
            self._client = pipeline_client
        else:
            if credential is None:
                raise ValueError("credential is required when no pipeline_client is given")
            self._client = build_pipeline_client(credential, scope, self._base_url)

    @property
    def base_url(self) -> str:
        return self._base_url

    def url(self, path: str) -> str:
        if path.startswith("https://") or path.startswith("http://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: Any = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (or None).

        Raises:
            ResourceNotFoundError: On 404.
            ClientAuthenticationError: On 401/403 or a non-JSON success body.
            ResourceExistsError: On 409.
            HttpResponseError: On any other error status.
        """
        url = self.url(path)
        if params:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{urlencode(params, quote_via=quote)}"
        request = HttpRequest(method, url, json=body)
        logger.debug(f"{method} {url}")
        response = self._client.send_request(request)
        raise_for_status(response)
        return decode_json(response)

    def get(self, path: str, *, params: dict[str, str] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, body: Any, *, params: dict[str, str] | None = None) -> Any:
        return self.request("POST", path, params=params, body=body)

    def patch(self, path: str, body: Any, *, params: dict[str, str] | None = None) -> Any:
        return self.request("PATCH", path, params=params, body=body)

    def list(self, path: str, *, params: dict[str, str] | None = None) -> list[dict[str, Any]]:
        """Read a collection, following ``@odata.nextLink`` pages.

        Raises:
            HttpResponseError: If the chain is longer than MAX_PAGES pages.
        """
        items: list[dict[str, Any]] = []
        page = self.get(path, params=params) or {}
        for _ in range(MAX_PAGES):
            items.extend(page.get("value") or [])
            next_link = page.get("@odata.nextLink")
            if not next_link:
                return items
            # nextLink already carries the query string
            page = self.get(next_link) or {}
        raise HttpResponseError(message=f"Paging {path} did not finish within {MAX_PAGES} pages")

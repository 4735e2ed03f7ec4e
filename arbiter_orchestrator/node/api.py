"""HTTP client for the node's administrative API."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..config import NodeCredentials
from ..errors import AuthenticationError, NodeRequestError, TransientNetworkError
from ..outcomes import AlreadyExists, Created, Failed, Outcome
from ..retry import RetryPolicy
from .schemas import (
    JobDocument,
    JobListDocument,
    JobResource,
    SessionDocument,
    classify_rejection,
    decode_json,
    normalize_job_id,
    parse_document,
)

LOGGER = logging.getLogger(__name__)

_TRANSIENT_STATUS = {502, 503, 504}
_PAGE_SIZE = 100


@dataclass
class NodeSession:
    """Authenticated session established by ``POST /sessions``."""

    cookies: Dict[str, str] = field(default_factory=dict)
    obtained_at: float = 0.0

    def is_expired(self, now: float, max_age: float) -> bool:
        return now - self.obtained_at >= max_age


class NodeApiClient:
    """Session-aware client for bridges and jobs.

    A session is established lazily and reused until it is older than
    ``session_max_age``. A ``401`` on any request triggers exactly one
    re-login and a single replay of that request.
    """

    def __init__(
        self,
        base_url: str,
        credentials: NodeCredentials,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        session_max_age: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)
        self._owns_client = client is None
        self._retry = retry or RetryPolicy()
        self._session_max_age = session_max_age
        self._clock = clock
        self._session: Optional[NodeSession] = None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "NodeApiClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -- transport ---------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _send_once(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = self._client.request(method, self._url(path), json=json, params=params)
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"{method} {path} failed: {exc}") from exc
        if response.status_code in _TRANSIENT_STATUS:
            raise TransientNetworkError(f"{method} {path} returned HTTP {response.status_code}")
        return response

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return self._retry.call(self._send_once, method, path, description=f"{method} {path}", **kwargs)

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        self.session()
        response = self._send(method, path, **kwargs)
        if response.status_code == 401:
            LOGGER.info("Node session rejected on %s %s; logging in again", method, path)
            self.login()
            response = self._send(method, path, **kwargs)
            if response.status_code == 401:
                raise AuthenticationError(
                    f"Node rejected {method} {path} after re-authentication",
                    remediation="Check the API credentials in ~/.chainlink-sepolia/.api",
                )
        return response

    @staticmethod
    def _payload(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text

    # -- session -----------------------------------------------------------

    def login(self) -> NodeSession:
        body = {
            "email": self._credentials.email,
            "password": self._credentials.password.get_secret_value(),
        }
        self._client.cookies.clear()
        response = self._send("POST", "/sessions", json=body)
        if response.status_code in (400, 401, 403):
            raise AuthenticationError(
                f"Node rejected login for {self._credentials.email} (HTTP {response.status_code})",
                remediation="Check the API credentials in ~/.chainlink-sepolia/.api",
            )
        if response.status_code >= 300:
            raise NodeRequestError(
                f"Node login failed with HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        document = parse_document(decode_json(response.content, context="login"), SessionDocument, context="login")
        if not document.data.attributes.authenticated:
            raise AuthenticationError(
                "Node did not authenticate the session",
                remediation="Check the API credentials in ~/.chainlink-sepolia/.api",
            )
        self._session = NodeSession(cookies=dict(self._client.cookies), obtained_at=self._clock())
        LOGGER.info("Logged in to node API at %s", self.base_url)
        return self._session

    def session(self) -> NodeSession:
        """Return the current session, logging in if none exists or it has expired."""

        if self._session is None or self._session.is_expired(self._clock(), self._session_max_age):
            return self.login()
        return self._session

    # -- bridges -----------------------------------------------------------

    @staticmethod
    def _bridge_body(name: str, url: str) -> Dict[str, Any]:
        return {"name": name, "url": url, "confirmations": 0, "minimumContractPayment": "0"}

    def create_bridge(self, name: str, url: str) -> Outcome:
        response = self._request("POST", "/v2/bridge_types", json=self._bridge_body(name, url))
        if response.is_success:
            LOGGER.info("Bridge %s created", name)
            return Created(resource_id=name)
        return classify_rejection(response.status_code, self._payload(response))

    def update_bridge(self, name: str, url: str) -> Outcome:
        response = self._request("PATCH", f"/v2/bridge_types/{name}", json=self._bridge_body(name, url))
        if response.is_success:
            LOGGER.info("Bridge %s updated to %s", name, url)
            return AlreadyExists(existing_id=name, detail="updated")
        return classify_rejection(response.status_code, self._payload(response))

    def upsert_bridge(self, name: str, url: str) -> Outcome:
        """Create the bridge, or point the existing one at ``url``."""

        outcome = self.create_bridge(name, url)
        if isinstance(outcome, AlreadyExists):
            LOGGER.info("Bridge %s already exists; updating", name)
            updated = self.update_bridge(name, url)
            if isinstance(updated, Failed):
                return updated
            return AlreadyExists(existing_id=name, detail="updated")
        return outcome

    # -- jobs --------------------------------------------------------------

    def create_job(self, spec_toml: str) -> Outcome:
        """Submit a job spec; ``Created.resource_id`` is the external job ID."""

        response = self._request("POST", "/v2/jobs", json={"toml": spec_toml})
        payload = self._payload(response)
        if response.is_success:
            document = parse_document(payload, JobDocument, context="job creation")
            return Created(resource_id=normalize_job_id(document.data.attributes.external_job_id))
        return classify_rejection(response.status_code, payload)

    def list_jobs(self) -> List[JobResource]:
        jobs: List[JobResource] = []
        page = 1
        while True:
            response = self._request("GET", "/v2/jobs", params={"page": page, "size": _PAGE_SIZE})
            if not response.is_success:
                raise NodeRequestError(
                    f"Listing jobs failed with HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            document = parse_document(self._payload(response), JobListDocument, context="job listing")
            jobs.extend(document.data)
            total = document.meta.count if document.meta is not None else None
            if not document.data or len(document.data) < _PAGE_SIZE:
                break
            if total is not None and len(jobs) >= total:
                break
            page += 1
        LOGGER.debug("Node reports %d job(s)", len(jobs))
        return jobs

    def find_job_by_name(self, name: str) -> Optional[JobResource]:
        """Return the job whose name equals ``name`` exactly."""

        for job in self.list_jobs():
            if job.attributes.name == name:
                return job
        return None

    def delete_job(self, job_id: str) -> None:
        response = self._request("DELETE", f"/v2/jobs/{job_id}")
        if not response.is_success:
            raise NodeRequestError(
                f"Deleting job {job_id} failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )


__all__ = ["NodeApiClient", "NodeSession"]

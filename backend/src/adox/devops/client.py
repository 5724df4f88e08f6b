"""HTTP client for the Azure DevOps REST API (read-only)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from urllib.parse import quote

import requests
from requests.exceptions import ChunkedEncodingError, ConnectionError, Timeout
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from adox.context import CollectionContext
from adox.errors import TransportError

logger = logging.getLogger(__name__)

API_VERSION = "7.1"
_CHUNK_SIZE = 64 * 1024
_CONTINUATION_HEADER = "x-ms-continuationtoken"

# Designer definitions only; YAML ones come from the pipelines listing
CLASSIC_PROCESS_TYPE = 1


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransportError) and exc.transient


def _check_status(resp: requests.Response, url: str) -> None:
    if resp.ok:
        return
    code = resp.status_code
    transient = code == 429 or code >= 500
    raise TransportError(
        f"GET {url} returned HTTP {code}: {resp.text[:300]}",
        status_code=code,
        transient=transient,
    )


class DevOpsClient:
    """Thin synchronous wrapper over ``requests.Session``.

    Every call is attempted up to ``ctx.http_max_attempts`` times, retrying
    only on 429/5xx, timeouts and dropped connections.
    """

    def __init__(self, ctx: CollectionContext, session: requests.Session | None = None) -> None:
        self.ctx = ctx
        self.session = session or requests.Session()
        self.session.headers.update(ctx.headers)

    def with_context(self, ctx: CollectionContext) -> DevOpsClient:
        """Return a client for ``ctx`` sharing this client's connection pool."""
        return DevOpsClient(ctx, self.session)

    # ── Plumbing ────────────────────────────────────────────────────────────

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(max(1, self.ctx.http_max_attempts)),
            wait=wait_exponential(multiplier=1, max=self.ctx.http_backoff_max_s),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )

    def url(self, path: str, project_scoped: bool = True) -> str:
        if path.startswith(("http://", "https://")):
            return path
        base = self.ctx.organization_url
        if project_scoped:
            if not self.ctx.project:
                raise TransportError("No project selected for a project-scoped request")
            base = f"{base}/{quote(self.ctx.project)}"
        return f"{base}/_apis/{path.lstrip('/')}"

    def _send(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        accept: str | None = None,
        stream: bool = False,
        versioned: bool = True,
    ) -> requests.Response:
        params = dict(params or {})
        if versioned:
            params.setdefault("api-version", API_VERSION)
        headers = {"Accept": accept} if accept else None
        try:
            resp = self.session.get(
                url,
                params=params,
                headers=headers,
                timeout=self.ctx.http_timeout_s,
                stream=stream,
            )
        except Timeout as e:
            raise TransportError(f"GET {url} timed out", transient=True) from e
        except ConnectionError as e:
            raise TransportError(f"GET {url} connection failed: {e}", transient=True) from e
        _check_status(resp, url)
        return resp

    def _get_response(
        self,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> requests.Response:
        for attempt in self._retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info("Retrying %s (attempt %d)", url, attempt.retry_state.attempt_number)
                return self._send(url, params)
        raise AssertionError("unreachable")

    def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        project_scoped: bool = True,
    ) -> Any:
        url = self.url(path, project_scoped)
        resp = self._get_response(url, params)
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"GET {url} returned malformed JSON") from e

    def get_paged(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        project_scoped: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Collect ``value`` entries across continuation-token pages."""
        url = self.url(path, project_scoped)
        params = dict(params or {})
        items: list[dict[str, Any]] = []
        while True:
            resp = self._get_response(url, params)
            try:
                body = resp.json()
            except ValueError as e:
                raise TransportError(f"GET {url} returned malformed JSON") from e
            if not isinstance(body, dict):
                raise TransportError(f"GET {url} returned unexpected payload")
            items.extend(body.get("value", []))
            token = resp.headers.get(_CONTINUATION_HEADER)
            if not token or (limit is not None and len(items) >= limit):
                break
            params["continuationToken"] = token
        return items[:limit] if limit is not None else items

    def download(
        self,
        url: str,
        dest: Path,
        params: dict[str, Any] | None = None,
        accept: str | None = None,
        versioned: bool = True,
    ) -> int:
        """Stream ``url`` to ``dest`` and return the byte count.

        Pass ``versioned=False`` for pre-signed URLs handed out by the
        service; they must be fetched exactly as given. A partially written
        file is removed before the error propagates.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        for attempt in self._retrying():
            with attempt:
                return self._download_once(url, dest, params, accept, versioned)
        raise AssertionError("unreachable")

    def _download_once(
        self,
        url: str,
        dest: Path,
        params: dict[str, Any] | None,
        accept: str | None,
        versioned: bool,
    ) -> int:
        written = 0
        try:
            resp = self._send(url, params, accept=accept, stream=True, versioned=versioned)
            with resp, open(dest, "wb") as fh:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
                        written += len(chunk)
        except (Timeout, ConnectionError, ChunkedEncodingError) as e:
            dest.unlink(missing_ok=True)
            raise TransportError(f"Download of {url} interrupted: {e}", transient=True) from e
        except BaseException:
            dest.unlink(missing_ok=True)
            raise
        logger.debug("Downloaded %s → %s (%d bytes)", url, dest, written)
        return written

    # ── Service operations ──────────────────────────────────────────────────

    def list_projects(self) -> list[dict[str, Any]]:
        """GET /_apis/projects"""
        return self.get_paged("projects", project_scoped=False)

    def list_pipelines(self) -> list[dict[str, Any]]:
        """GET /{project}/_apis/pipelines"""
        return self.get_paged("pipelines")

    def get_pipeline(self, pipeline_id: int) -> dict[str, Any]:
        """GET /{project}/_apis/pipelines/{id}

        Includes ``configuration`` (YAML path and repository).
        """
        return self.get_json(f"pipelines/{pipeline_id}")

    def list_build_definitions(self) -> list[dict[str, Any]]:
        """GET /{project}/_apis/build/definitions?processType=1"""
        return self.get_paged("build/definitions", {"processType": CLASSIC_PROCESS_TYPE})

    def get_build_definition(self, definition_id: int) -> dict[str, Any]:
        """GET /{project}/_apis/build/definitions/{id} (full export)."""
        return self.get_json(f"build/definitions/{definition_id}")

    def list_pipeline_runs(self, pipeline_id: int, top: int) -> list[dict[str, Any]]:
        """GET /{project}/_apis/pipelines/{id}/runs

        The service returns newest first and has no server-side ``$top``.
        """
        body = self.get_json(f"pipelines/{pipeline_id}/runs")
        runs = body.get("value", []) if isinstance(body, dict) else []
        return runs[:top]

    def list_builds(self, definition_id: int, top: int) -> list[dict[str, Any]]:
        """GET /{project}/_apis/build/builds?definitions={id}&$top={top}"""
        body = self.get_json(
            "build/builds",
            {
                "definitions": definition_id,
                "$top": top,
                "queryOrder": "queueTimeDescending",
            },
        )
        return body.get("value", []) if isinstance(body, dict) else []

    def get_pipeline_run_logs(self, pipeline_id: int, run_id: int) -> dict[str, Any]:
        """GET /{project}/_apis/pipelines/{id}/runs/{runId}/logs?$expand=signedContent"""
        return self.get_json(
            f"pipelines/{pipeline_id}/runs/{run_id}/logs",
            {"$expand": "signedContent"},
        )

    def build_logs_zip_url(self, build_id: int) -> str:
        """URL of /{project}/_apis/build/builds/{id}/logs?$format=zip"""
        return self.url(f"build/builds/{build_id}/logs")

    def git_item_url(self, repository_id: str) -> str:
        return self.url(f"git/repositories/{repository_id}/items")

    def github_file_url(self) -> str:
        return self.url("sourceProviders/github/filecontents")

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

import requests
from pydantic import BaseModel

from ..config import Config
from .errors import AuthenticationError, TransportError

logger = logging.getLogger(__name__)

NEXT_TOKEN_HEADER = "x-next-sync-token"


class SyncPage(BaseModel):
    """One response of a ``/api/<kind>/sync`` endpoint.

    ``terminal`` is set for the 204 "no content" reply; the other fields
    are then empty.
    """

    items: list[dict[str, Any]] = []
    deleted: list[Any] = []
    base_items: dict[str, dict[str, Any]] = {}
    next_token: str | None = None
    terminal: bool = False

    model_config = {"frozen": True}


class LeadCMSClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        """Session for the current thread."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["Accept"] = "application/json"
        return session

    @property
    def has_credentials(self) -> bool:
        return bool(self.config.api_key)

    def _auth_headers(self, authenticated: bool) -> dict[str, str]:
        if not authenticated:
            return {}
        if not self.config.api_key:
            raise AuthenticationError(
                "LeadCMS API key is required for this request. "
                "Set LEADCMS_API_KEY or pass --api-key."
            )
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def _get(
        self,
        path: str,
        params: dict[str, str] | None = None,
        authenticated: bool = False,
        stream: bool = False,
        timeout: tuple[int, int | None] | None = None,
    ) -> requests.Response:
        """
        Issue a GET and translate failures into the client's error types.
        """
        url = f"{self.config.url}{path}"
        headers = self._auth_headers(authenticated)
        try:
            response = self._get_session().get(
                url,
                params=params,
                headers=headers,
                timeout=timeout or (10, self.config.timeout),
                stream=stream,
            )
        except requests.Timeout as exc:
            raise TransportError(
                f"Request to {url} timed out", url=url
            ) from exc
        except requests.RequestException as exc:
            raise TransportError(
                f"Request to {url} failed: {exc}", url=url
            ) from exc

        if response.status_code in (401, 403):
            response.close()
            hint = (
                "check LEADCMS_API_KEY"
                if authenticated
                else "endpoint requires authentication"
            )
            raise AuthenticationError(
                f"LeadCMS rejected the request ({response.status_code}): {hint}",
                url=url,
                status_code=response.status_code,
            )

        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            response.close()
            raise TransportError(
                f"LeadCMS returned {response.status_code} for {url}",
                url=url,
                status_code=response.status_code,
            ) from exc
        return response

    @staticmethod
    def _json(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"Invalid JSON from {response.url}",
                url=response.url,
                status_code=response.status_code,
            ) from exc

    # ------------------------------------------------------------------
    # Sync endpoints
    # ------------------------------------------------------------------

    def get_sync_page(
        self,
        kind_path: str,
        token: str,
        page_size: int,
        include_base: bool = False,
        authenticated: bool = False,
    ) -> SyncPage:
        """
        Fetch one page of changes since *token* for an entity kind.
        """
        params = {"filter[limit]": str(page_size), "syncToken": token}
        if include_base:
            params["includeBase"] = "true"

        response = self._get(
            f"/api/{kind_path}/sync",
            params=params,
            authenticated=authenticated,
        )
        if response.status_code == 204:
            return SyncPage(terminal=True)

        data = self._json(response) or {}
        if not isinstance(data, dict):
            raise TransportError(
                f"Unexpected sync payload from {response.url}",
                url=response.url,
                status_code=response.status_code,
            )

        items = data.get("items")
        deleted = data.get("deleted")
        base_items = data.get("baseItems")
        return SyncPage(
            items=[i for i in items if isinstance(i, dict)]
            if isinstance(items, list)
            else [],
            deleted=deleted if isinstance(deleted, list) else [],
            base_items={
                str(k): v
                for k, v in base_items.items()
                if isinstance(v, dict)
            }
            if isinstance(base_items, dict)
            else {},
            next_token=response.headers.get(NEXT_TOKEN_HEADER),
        )

    # ------------------------------------------------------------------
    # Metadata endpoints
    # ------------------------------------------------------------------

    def get_content_types(self) -> dict[str, str]:
        """
        Map each content type uid to its file format ("MDX" or "JSON").
        """
        response = self._get(
            "/api/content-types", params={"filter[limit]": "100"}
        )
        data = self._json(response) or []
        type_map: dict[str, str] = {}
        for entry in data if isinstance(data, list) else []:
            uid = entry.get("uid") if isinstance(entry, dict) else None
            if not uid:
                continue
            fmt = str(entry.get("format") or "MDX").upper()
            type_map[uid] = "JSON" if fmt == "JSON" else "MDX"
        logger.debug("Loaded %d content types", len(type_map))
        return type_map

    def get_cms_config(self) -> dict[str, Any]:
        """
        Fetch ``/api/config``; an instance without the endpoint yields ``{}``.
        """
        try:
            response = self._get("/api/config")
        except TransportError as exc:
            if exc.status_code == 404:
                logger.debug("/api/config not available; assuming all entities")
                return {}
            raise
        data = self._json(response)
        return data if isinstance(data, dict) else {}

    def get_email_groups(self) -> list[dict[str, Any]]:
        """
        List email groups; empty when no API key is configured.
        """
        if not self.has_credentials:
            logger.debug("No API key configured; skipping email groups")
            return []
        response = self._get("/api/email-groups", authenticated=True)
        data = self._json(response)
        return [g for g in data if isinstance(g, dict)] if isinstance(data, list) else []

    def export_settings(self) -> list[dict[str, Any]]:
        """
        Export every setting visible to the configured credential.
        """
        response = self._get("/api/settings/export", authenticated=True)
        data = self._json(response)
        return [s for s in data if isinstance(s, dict)] if isinstance(data, list) else []

    # ------------------------------------------------------------------
    # Media and streaming
    # ------------------------------------------------------------------

    def download_media(self, location: str, dest: Path) -> bool:
        """
        Download the file at *location* into *dest*.

        The body is streamed into a temporary file beside *dest* and moved
        into place only when complete.  A 404 removes any stale *dest*.

        Returns:
            ``True`` if the file was written, ``False`` on 404.
        """
        path = location if location.startswith("/") else f"/{location}"
        try:
            response = self._get(path, stream=True)
        except TransportError as exc:
            if exc.status_code == 404:
                logger.warning("Media not found remotely: %s", location)
                dest.unlink(missing_ok=True)
                return False
            raise

        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(dest.parent), suffix=".part")
        try:
            with response, os.fdopen(fd, "wb") as fh:
                for chunk in response.iter_content(chunk_size=65536):
                    fh.write(chunk)
            os.replace(tmp_path, dest)
        except requests.RequestException as exc:
            Path(tmp_path).unlink(missing_ok=True)
            raise TransportError(
                f"Download of {location} failed: {exc}", url=location
            ) from exc
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        return True

    def open_event_stream(self, entities: str = "Content") -> requests.Response:
        """
        Open the server-sent event stream for change notifications.

        The read timeout is generous because the server only sends
        heartbeats between changes.
        """
        return self._get(
            "/api/sse/stream",
            params={
                "entities": entities,
                "includeContent": "true",
                "includeLiveDrafts": "true",
            },
            authenticated=self.has_credentials,
            stream=True,
            timeout=(10, max(self.config.timeout, 120)),
        )

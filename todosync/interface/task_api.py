"""Task service gateway over HTTP using httpx.

Translates every transport failure into the sync error taxonomy so nothing
httpx-specific leaks past this module.
"""

import logging
from datetime import UTC, date, datetime, time
from types import TracebackType
from typing import Any, Self

import httpx
from pydantic import BaseModel, Field, ValidationError

from todosync.core import errors
from todosync.core.config import constants, settings
from todosync.domain.task import Task, TaskPriority


logger = logging.getLogger(__name__)


class TaskElement(BaseModel):
    """Wire representation of a task."""

    id: str = Field(..., description="Client-assigned task ID")
    text: str = Field(..., description="Task text")
    importance: TaskPriority = Field(default=TaskPriority.BASIC, description="low, basic or important")
    deadline: int | None = Field(default=None, description="Due date as unix seconds")
    done: bool = Field(default=False, description="Completion flag")
    color: str | None = Field(default=None, description="Optional display color, unused by this client")
    created_at: int = Field(..., description="Creation time as unix seconds")
    changed_at: int = Field(..., description="Last change time as unix seconds")
    last_updated_by: str = Field(default="", description="Device that made the last change")


class ElementRequest(BaseModel):
    element: TaskElement


class ElementResponse(BaseModel):
    status: str = Field(default="ok")
    element: TaskElement
    revision: int


class ListResponse(BaseModel):
    status: str = Field(default="ok")
    items: list[TaskElement] = Field(..., alias="list")
    revision: int


def _date_to_unix(value: date) -> int:
    return int(datetime.combine(value, time.min, tzinfo=UTC).timestamp())


def _unix_to_date(value: int) -> date:
    return datetime.fromtimestamp(value, tz=UTC).date()


def to_element(task: Task, *, device_id: str) -> TaskElement:
    """Convert a domain task to the wire element."""
    return TaskElement(
        id=task.id,
        text=task.text,
        importance=task.priority,
        deadline=_date_to_unix(task.deadline) if task.deadline else None,
        done=task.done,
        created_at=_date_to_unix(task.created_at),
        changed_at=int(task.modified_at.timestamp()),
        last_updated_by=device_id,
    )


def from_element(element: TaskElement) -> Task:
    """Convert a wire element to a domain task acknowledged by the server."""
    return Task(
        id=element.id,
        text=element.text,
        priority=element.importance,
        deadline=_unix_to_date(element.deadline) if element.deadline is not None else None,
        done=element.done,
        created_at=_unix_to_date(element.created_at),
        modified_at=datetime.fromtimestamp(element.changed_at, tz=UTC),
        is_synced=True,
    )


def _extract_error_code(response: httpx.Response) -> str:
    """Pull an application error code out of a failed response body."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ("code", "error", "message"):
            value = body.get(key)
            if value:
                return str(value)

    text = response.text.strip()
    if text:
        return text[:200]
    return f"http_{response.status_code}"


class TaskApiClient:
    """Stateless-per-call adapter for the task service REST API.

    The only state kept is the last list revision the server reported, which
    mutating requests must echo back in X-Last-Known-Revision.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        device_id: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        token = token if token is not None else settings.api_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._device_id = device_id or settings.device_id
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.request_timeout_seconds,
            transport=transport,
        )
        self.revision: int | None = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, *, payload: BaseModel | None = None) -> tuple[int, dict[str, Any]]:
        """Send one request and return its status code and decoded JSON body.

        Raises:
            ConnectivityError: The host could not be reached
            TransportError: The exchange failed after connecting (timeout, reset, protocol error)
            ApiError: The server answered with a non-success status or an undecodable body
        """
        headers = {}
        if method != "GET" and self.revision is not None:
            headers[constants.REVISION_HEADER] = str(self.revision)

        try:
            response = await self._client.request(
                method,
                path,
                json=payload.model_dump(mode="json") if payload is not None else None,
                headers=headers,
            )
        except httpx.ConnectError as e:
            logger.warning("task_api_unreachable", extra={"method": method, "path": path, "error": str(e)})
            msg = f"Task service unreachable: {e}"
            raise errors.ConnectivityError(msg) from e
        except httpx.RequestError as e:
            logger.warning(
                "task_api_transport_failed",
                extra={"method": method, "path": path, "error": str(e), "error_type": type(e).__name__},
            )
            msg = f"Task service request failed: {type(e).__name__}: {e}"
            raise errors.TransportError(msg) from e

        if not response.is_success:
            code = _extract_error_code(response)
            logger.warning(
                "task_api_rejected",
                extra={"method": method, "path": path, "status": response.status_code, "code": code},
            )
            raise errors.ApiError(response.status_code, code)

        try:
            body = response.json()
        except ValueError as e:
            raise errors.ApiError(response.status_code, "malformed_response") from e
        if not isinstance(body, dict):
            raise errors.ApiError(response.status_code, "malformed_response")
        return response.status_code, body

    def _remember_revision(self, revision: int) -> None:
        self.revision = revision

    async def _element_call(self, method: str, path: str, payload: BaseModel | None = None) -> Task:
        status, body = await self._request(method, path, payload=payload)
        try:
            parsed = ElementResponse.model_validate(body)
        except ValidationError as e:
            raise errors.ApiError(status, "malformed_response") from e
        self._remember_revision(parsed.revision)
        return from_element(parsed.element)

    async def fetch_all(self) -> list[Task]:
        """Fetch the full server-side task list."""
        status, body = await self._request("GET", "/list")
        try:
            parsed = ListResponse.model_validate(body)
        except ValidationError as e:
            raise errors.ApiError(status, "malformed_response") from e
        self._remember_revision(parsed.revision)
        logger.info("Fetched remote tasks", extra={"count": len(parsed.items), "revision": parsed.revision})
        return [from_element(element) for element in parsed.items]

    async def create(self, task: Task) -> Task:
        """Create a task on the server and return the server's version of it."""
        payload = ElementRequest(element=to_element(task, device_id=self._device_id))
        return await self._element_call("POST", "/list", payload)

    async def update(self, task: Task) -> Task:
        """Replace a task on the server and return the server's version of it."""
        payload = ElementRequest(element=to_element(task, device_id=self._device_id))
        return await self._element_call("PUT", f"/list/{task.id}", payload)

    async def delete(self, task_id: str) -> None:
        """Delete a task on the server."""
        await self._element_call("DELETE", f"/list/{task_id}")

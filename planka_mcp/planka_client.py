import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from json import JSONDecodeError
from typing import Any

import httpx

from .exceptions import (
    AuthenticationError,
    BackendError,
    BackendValidationError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    UnauthorizedError,
    ValidationError,
)
from .models import (
    DEFAULT_POSITION,
    Attachment,
    Board,
    BoardFull,
    Card,
    CardDetails,
    Comment,
    CustomField,
    CustomFieldGroup,
    CustomFieldValue,
    Label,
    List,
    Project,
    Task,
    TaskList,
)
from .views import build_board_full, build_card_details

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass
class ApiResponse:
    data: Any | None = None
    status_code: int | None = None


def _error_details(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except JSONDecodeError:
        return f"HTTP {response.status_code}: {response.text}", response.text

    message = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or body.get("code")
    return str(message or f"HTTP {response.status_code}"), body


def _raise_for_status(response: httpx.Response, method: str, endpoint: str) -> None:
    status = response.status_code
    message, body = _error_details(response)
    logger.error(f"{method} {endpoint} failed with {status}: {message}")

    if status == 401:
        raise UnauthorizedError(message, status_code=status, body=body)
    if status == 404:
        raise NotFoundError(message, status_code=status, body=body)
    if status in (400, 422):
        raise BackendValidationError(message, status_code=status, body=body)
    raise BackendError(message, status_code=status, body=body)


def _payload(response: ApiResponse, context: str) -> dict[str, Any]:
    data = response.data
    if not isinstance(data, dict) or not isinstance(data.get("item"), dict):
        raise BackendError(
            f"Backend returned invalid {context} format: expected an object with 'item'",
            status_code=response.status_code or 0,
            body=data,
        )
    return data


def _item(response: ApiResponse, context: str) -> Any:
    return _payload(response, context)["item"]


def _items(response: ApiResponse, context: str) -> list[Any]:
    data = response.data
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise BackendError(
            f"Backend returned invalid {context} format: expected an object with 'items'",
            status_code=response.status_code or 0,
            body=data,
        )
    return data["items"]


class PlankaClient:
    """Async client for the Planka REST API.

    Holds one bearer token for the whole process. The token is obtained
    lazily on the first call, and a 401 on any request clears it, logs in
    again and retries that request once. Concurrent logins are coalesced
    into a single in-flight request.
    """

    def __init__(
        self,
        base_url: str,
        email: str,
        password: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/api"
        self.email = email
        self._password = password
        self.timeout = timeout
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=timeout, headers={"Accept": "application/json"}
        )
        self._token: str | None = None
        self._auth_task: asyncio.Task[str] | None = None

    async def __aenter__(self) -> "PlankaClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    @property
    def token(self) -> str | None:
        return self._token

    async def _send(
        self,
        method: str,
        url: str,
        token: str | None,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        form: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            return await self.http_client.request(
                method,
                url,
                json=data,
                params=params,
                files=files,
                data=form,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                f"Planka did not respond within {self.timeout}s ({method} {url})"
            ) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Unable to reach Planka at {self.base_url}: {e}") from e

    async def _login(self) -> str:
        logger.info(f"Authenticating with Planka at {self.base_url}")
        response = await self._send(
            "POST",
            f"{self.api_url}/access-tokens",
            token=None,
            data={"emailOrUsername": self.email, "password": self._password},
        )

        if response.status_code >= 400:
            message, body = _error_details(response)
            logger.error(f"Authentication failed: {message}")
            raise AuthenticationError(
                f"Authentication failed: {message}", status_code=response.status_code, body=body
            )

        try:
            token = response.json().get("item")
        except (JSONDecodeError, AttributeError):
            token = None
        if not isinstance(token, str) or not token:
            raise AuthenticationError(
                "Authentication response did not contain an access token",
                status_code=response.status_code,
            )

        self._token = token
        logger.info("Authentication successful")
        return token

    def _auth_finished(self, task: "asyncio.Task[str]") -> None:
        if self._auth_task is task:
            self._auth_task = None

    async def authenticate(self) -> str:
        """Exchange the stored credentials for a new bearer token.

        Callers arriving while a login is already in flight wait for that
        login instead of starting another one, and all of them see its
        result or its error.
        """
        if self._auth_task is None:
            self._auth_task = asyncio.get_running_loop().create_task(self._login())
            self._auth_task.add_done_callback(self._auth_finished)
        # Shielded so that one cancelled caller does not abort the shared login.
        return await asyncio.shield(self._auth_task)

    async def ensure_authenticated(self) -> str:
        if self._token is not None:
            return self._token
        return await self.authenticate()

    async def _reauthenticate(self, stale_token: str) -> str:
        if self._token is not None and self._token != stale_token:
            # Another request already replaced the expired token.
            return self._token
        self._token = None
        return await self.authenticate()

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        form: dict[str, Any] | None = None,
    ) -> ApiResponse:
        url = f"{self.api_url}{endpoint}"
        token = await self.ensure_authenticated()

        response = await self._send(method, url, token, data, params, files, form)
        logger.debug(f"{method} {endpoint} -> {response.status_code}")

        if response.status_code == 401:
            logger.warning(f"Token rejected on {method} {endpoint}, re-authenticating")
            token = await self._reauthenticate(token)
            response = await self._send(method, url, token, data, params, files, form)
            logger.debug(f"{method} {endpoint} (retry) -> {response.status_code}")

        if response.status_code >= 400:
            _raise_for_status(response, method, endpoint)

        try:
            json_data = response.json()
        except JSONDecodeError:
            json_data = None

        return ApiResponse(data=json_data, status_code=response.status_code)

    # Projects

    async def get_projects(self) -> list[Project]:
        response = await self._make_request("GET", "/projects")
        return _items(response, "projects")

    async def get_project(self, project_id: str) -> Project:
        response = await self._make_request("GET", f"/projects/{project_id}")
        return _item(response, "project")

    async def create_project(self, name: str) -> Project:
        response = await self._make_request("POST", "/projects", {"name": name, "type": "shared"})
        return _item(response, "project")

    async def update_project(self, project_id: str, **fields: Any) -> Project:
        response = await self._make_request("PATCH", f"/projects/{project_id}", fields)
        return _item(response, "project")

    async def delete_project(self, project_id: str) -> None:
        await self._make_request("DELETE", f"/projects/{project_id}")

    # Boards

    async def get_boards(self, project_id: str) -> list[Board]:
        response = await self._make_request("GET", f"/projects/{project_id}")
        payload = _payload(response, "project")
        return list((payload.get("included") or {}).get("boards") or [])

    async def get_board(self, board_id: str) -> BoardFull:
        response = await self._make_request("GET", f"/boards/{board_id}")
        return build_board_full(_payload(response, "board"))

    async def create_board(
        self, project_id: str, name: str, position: float | None = None
    ) -> Board:
        data = {"name": name, "position": DEFAULT_POSITION if position is None else position}
        response = await self._make_request("POST", f"/projects/{project_id}/boards", data)
        return _item(response, "board")

    async def update_board(self, board_id: str, **fields: Any) -> Board:
        response = await self._make_request("PATCH", f"/boards/{board_id}", fields)
        return _item(response, "board")

    async def delete_board(self, board_id: str) -> None:
        await self._make_request("DELETE", f"/boards/{board_id}")

    # Lists

    async def create_list(self, board_id: str, name: str, position: float | None = None) -> List:
        data = {
            "name": name,
            "type": "active",
            "position": DEFAULT_POSITION if position is None else position,
        }
        response = await self._make_request("POST", f"/boards/{board_id}/lists", data)
        return _item(response, "list")

    async def update_list(self, list_id: str, **fields: Any) -> List:
        response = await self._make_request("PATCH", f"/lists/{list_id}", fields)
        return _item(response, "list")

    async def delete_list(self, list_id: str) -> None:
        await self._make_request("DELETE", f"/lists/{list_id}")

    # Cards

    async def get_card(self, card_id: str) -> CardDetails:
        response = await self._make_request("GET", f"/cards/{card_id}")
        return build_card_details(_payload(response, "card"))

    async def create_card(
        self,
        list_id: str,
        name: str,
        description: str | None = None,
        due_date: str | None = None,
        position: float | None = None,
        card_type: str = "project",
    ) -> Card:
        data: dict[str, Any] = {
            "name": name,
            "type": card_type,
            "position": DEFAULT_POSITION if position is None else position,
        }
        if description is not None:
            data["description"] = description
        if due_date is not None:
            data["dueDate"] = due_date
        response = await self._make_request("POST", f"/lists/{list_id}/cards", data)
        return _item(response, "card")

    async def update_card(self, card_id: str, **fields: Any) -> Card:
        response = await self._make_request("PATCH", f"/cards/{card_id}", fields)
        return _item(response, "card")

    async def move_card(self, card_id: str, list_id: str, position: float | None = None) -> Card:
        data = {"listId": list_id, "position": DEFAULT_POSITION if position is None else position}
        response = await self._make_request("PATCH", f"/cards/{card_id}", data)
        return _item(response, "card")

    async def delete_card(self, card_id: str) -> None:
        await self._make_request("DELETE", f"/cards/{card_id}")

    # Labels

    async def create_label(self, board_id: str, name: str, color: str) -> Label:
        data = {"name": name, "color": color, "position": DEFAULT_POSITION}
        response = await self._make_request("POST", f"/boards/{board_id}/labels", data)
        return _item(response, "label")

    async def add_label_to_card(self, card_id: str, label_id: str) -> None:
        await self._make_request("POST", f"/cards/{card_id}/card-labels", {"labelId": label_id})

    async def remove_label_from_card(self, card_id: str, label_id: str) -> None:
        await self._make_request("DELETE", f"/cards/{card_id}/card-labels/labelId:{label_id}")

    # Task lists

    async def create_task_list(
        self, card_id: str, name: str, position: float | None = None
    ) -> TaskList:
        data = {"name": name, "position": DEFAULT_POSITION if position is None else position}
        response = await self._make_request("POST", f"/cards/{card_id}/task-lists", data)
        return _item(response, "task list")

    async def update_task_list(self, task_list_id: str, **fields: Any) -> TaskList:
        response = await self._make_request("PATCH", f"/task-lists/{task_list_id}", fields)
        return _item(response, "task list")

    async def delete_task_list(self, task_list_id: str) -> None:
        await self._make_request("DELETE", f"/task-lists/{task_list_id}")

    # Tasks

    async def create_task(self, task_list_id: str, name: str, position: float | None = None) -> Task:
        data = {"name": name, "position": DEFAULT_POSITION if position is None else position}
        response = await self._make_request("POST", f"/task-lists/{task_list_id}/tasks", data)
        return _item(response, "task")

    async def update_task(self, task_id: str, **fields: Any) -> Task:
        response = await self._make_request("PATCH", f"/tasks/{task_id}", fields)
        return _item(response, "task")

    async def delete_task(self, task_id: str) -> None:
        await self._make_request("DELETE", f"/tasks/{task_id}")

    # Attachments

    async def upload_attachment_buffer(
        self, card_id: str, content: bytes, filename: str, mime_type: str | None = None
    ) -> Attachment:
        """Upload raw bytes as a card attachment.

        Goes through the same request path as every other call, so an
        expired token is refreshed and the upload retried once.
        """
        files = {"file": (filename, content, mime_type or "application/octet-stream")}
        form = {"type": "file", "name": filename}
        logger.info(f"Uploading {filename} ({len(content)} bytes) to card {card_id}")
        response = await self._make_request(
            "POST", f"/cards/{card_id}/attachments", files=files, form=form
        )
        return _item(response, "attachment")

    async def upload_attachment_base64(
        self, card_id: str, base64_content: str, filename: str, mime_type: str | None = None
    ) -> Attachment:
        try:
            content = base64.b64decode(base64_content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"fileContent is not valid base64: {e}") from e
        return await self.upload_attachment_buffer(card_id, content, filename, mime_type)

    async def delete_attachment(self, attachment_id: str) -> None:
        await self._make_request("DELETE", f"/attachments/{attachment_id}")

    # Comments

    async def get_comments(self, card_id: str) -> list[Comment]:
        response = await self._make_request("GET", f"/cards/{card_id}/comments")
        return _items(response, "comments")

    async def add_comment(self, card_id: str, text: str) -> Comment:
        response = await self._make_request("POST", f"/cards/{card_id}/comments", {"text": text})
        return _item(response, "comment")

    async def delete_comment(self, comment_id: str) -> None:
        await self._make_request("DELETE", f"/comments/{comment_id}")

    # Card memberships

    async def add_card_member(self, card_id: str, user_id: str) -> None:
        await self._make_request("POST", f"/cards/{card_id}/card-memberships", {"userId": user_id})

    async def remove_card_member(self, card_id: str, user_id: str) -> None:
        await self._make_request("DELETE", f"/cards/{card_id}/card-memberships/userId:{user_id}")

    # Custom field groups

    async def create_custom_field_group(
        self, board_id: str, name: str, position: float | None = None
    ) -> CustomFieldGroup:
        data = {"name": name, "position": DEFAULT_POSITION if position is None else position}
        response = await self._make_request("POST", f"/boards/{board_id}/custom-field-groups", data)
        return _item(response, "custom field group")

    async def update_custom_field_group(self, group_id: str, **fields: Any) -> CustomFieldGroup:
        response = await self._make_request("PATCH", f"/custom-field-groups/{group_id}", fields)
        return _item(response, "custom field group")

    async def delete_custom_field_group(self, group_id: str) -> None:
        await self._make_request("DELETE", f"/custom-field-groups/{group_id}")

    # Custom fields

    async def create_custom_field(
        self, group_id: str, name: str, position: float | None = None
    ) -> CustomField:
        data = {"name": name, "position": DEFAULT_POSITION if position is None else position}
        response = await self._make_request(
            "POST", f"/custom-field-groups/{group_id}/custom-fields", data
        )
        return _item(response, "custom field")

    async def update_custom_field(self, field_id: str, **fields: Any) -> CustomField:
        response = await self._make_request("PATCH", f"/custom-fields/{field_id}", fields)
        return _item(response, "custom field")

    async def delete_custom_field(self, field_id: str) -> None:
        await self._make_request("DELETE", f"/custom-fields/{field_id}")

    # Custom field values

    @staticmethod
    def _custom_field_value_path(card_id: str, group_id: str, field_id: str) -> str:
        return (
            f"/cards/{card_id}/custom-field-values/"
            f"customFieldGroupId:{group_id}:customFieldId:{field_id}"
        )

    async def set_custom_field_value(
        self, card_id: str, group_id: str, field_id: str, content: str
    ) -> CustomFieldValue:
        path = self._custom_field_value_path(card_id, group_id, field_id)
        response = await self._make_request("PATCH", path, {"content": content})
        return _item(response, "custom field value")

    async def delete_custom_field_value(self, card_id: str, group_id: str, field_id: str) -> None:
        await self._make_request("DELETE", self._custom_field_value_path(card_id, group_id, field_id))

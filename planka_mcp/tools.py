"""
Tool table exposed over MCP.

Every tool is a ``ToolDefinition``: a name, a description, a pydantic input
model (its JSON schema is what clients see) and a handler that makes exactly
one ``PlankaClient`` call. The set is closed; ``TOOLS`` lists all of them.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

import pydantic
from mcp.types import TextContent, Tool
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ToolError
from .planka_client import PlankaClient

logger = logging.getLogger(__name__)

LabelColor = Literal[
    "berry-red",
    "pumpkin-orange",
    "lagoon-blue",
    "pink-tulip",
    "light-mud",
    "orange-peel",
    "bright-moss",
    "antique-blue",
    "dark-granite",
    "lagune-blue",
    "sunny-grass",
    "morning-sky",
    "light-orange",
    "midnight-blue",
    "tank-green",
    "gun-metal",
    "wet-moss",
    "red-burgundy",
    "light-concrete",
    "apricot-red",
    "desert-sand",
    "navy-blue",
    "egg-yellow",
    "coral-green",
    "light-cocoa",
]


class ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def changes(self, *exclude: str) -> dict[str, Any]:
        """Fields the caller provided, keyed by their API (camelCase) names."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude=set(exclude))


def _id(alias: str, description: str) -> Any:
    return Field(alias=alias, description=description)


def _position(description: str) -> Any:
    return Field(default=None, description=description)


# Inputs


class NoInput(ToolInput):
    pass


class ProjectIdInput(ToolInput):
    project_id: str = _id("projectId", "The project ID")


class CreateProjectInput(ToolInput):
    name: str = Field(description="The project name")


class UpdateProjectInput(ToolInput):
    project_id: str = _id("projectId", "The project ID")
    name: str = Field(description="New name for the project")


class BoardIdInput(ToolInput):
    board_id: str = _id("boardId", "The board ID")


class CreateBoardInput(ToolInput):
    project_id: str = _id("projectId", "The project ID to create the board in")
    name: str = Field(description="The board name")
    position: float | None = _position("Position of the board (optional, defaults to end)")


class UpdateBoardInput(ToolInput):
    board_id: str = _id("boardId", "The board ID")
    name: str | None = Field(default=None, description="New name for the board")
    position: float | None = _position("New position for the board")


class CreateListInput(ToolInput):
    board_id: str = _id("boardId", "The board ID to create the list in")
    name: str = Field(description="The list name")
    position: float | None = _position("Position of the list (optional, defaults to end)")


class UpdateListInput(ToolInput):
    list_id: str = _id("listId", "The list ID")
    name: str | None = Field(default=None, description="New name for the list")
    position: float | None = _position("New position for the list")


class ListIdInput(ToolInput):
    list_id: str = _id("listId", "The list ID")


class CardIdInput(ToolInput):
    card_id: str = _id("cardId", "The card ID")


class CreateCardInput(ToolInput):
    list_id: str = _id("listId", "The list ID to create the card in")
    name: str = Field(description="The card name/title")
    description: str | None = Field(default=None, description="Card description (supports Markdown)")
    due_date: str | None = Field(
        default=None,
        alias="dueDate",
        description="Due date in ISO 8601 format (e.g. 2025-12-31T23:59:00Z)",
    )
    position: float | None = _position("Position of the card in the list (optional, defaults to end)")


class Stopwatch(ToolInput):
    started_at: str | None = Field(
        alias="startedAt",
        description="ISO 8601 datetime when timer was started, or null to stop",
    )
    total: float = Field(description="Total elapsed seconds")


class UpdateCardInput(ToolInput):
    card_id: str = _id("cardId", "The card ID")
    name: str | None = Field(default=None, description="New name for the card")
    description: str | None = Field(default=None, description="New description (supports Markdown)")
    due_date: str | None = Field(
        default=None,
        alias="dueDate",
        description="New due date in ISO 8601 format, or empty string to remove",
    )
    is_due_date_completed: bool | None = Field(
        default=None, alias="isDueDateCompleted", description="Mark due date as completed"
    )
    is_subscribed: bool | None = Field(
        default=None,
        alias="isSubscribed",
        description="Subscribe or unsubscribe from card notifications",
    )
    stopwatch: Stopwatch | None = Field(
        default=None,
        description=(
            "Stopwatch state. To start: set startedAt to now and total to 0. "
            "To stop: set startedAt to null and total to elapsed seconds."
        ),
    )


class MoveCardInput(ToolInput):
    card_id: str = _id("cardId", "The card ID to move")
    list_id: str = _id("listId", "The destination list ID")
    position: float | None = _position("Position in the new list (optional, defaults to end)")


class CardLabelInput(ToolInput):
    card_id: str = _id("cardId", "The card ID")
    label_id: str = _id("labelId", "The label ID")


class CreateLabelInput(ToolInput):
    board_id: str = _id("boardId", "The board ID")
    name: str = Field(description="Label name")
    color: LabelColor = Field(description="Label color")


class CreateTaskListInput(ToolInput):
    card_id: str = _id("cardId", "The card ID")
    name: str = Field(description="Task list name")
    position: float | None = _position("Position of the task list (optional)")


class UpdateTaskListInput(ToolInput):
    task_list_id: str = _id("taskListId", "The task list ID")
    name: str | None = Field(default=None, description="New name for the task list")
    position: float | None = _position("New position for the task list")


class TaskListIdInput(ToolInput):
    task_list_id: str = _id("taskListId", "The task list ID")


class CreateTaskInput(ToolInput):
    task_list_id: str = _id("taskListId", "The task list ID")
    name: str = Field(description="Task description")
    position: float | None = _position("Position of the task (optional)")


class UpdateTaskInput(ToolInput):
    task_id: str = _id("taskId", "The task ID")
    name: str | None = Field(default=None, description="New task name")
    is_completed: bool | None = Field(
        default=None, alias="isCompleted", description="Mark task as completed or not"
    )


class TaskIdInput(ToolInput):
    task_id: str = _id("taskId", "The task ID")


class UploadAttachmentInput(ToolInput):
    card_id: str = _id("cardId", "The card ID")
    filename: str = Field(description='Filename for the attachment (e.g. "report.pdf")')
    file_content: str = Field(alias="fileContent", description="Base64-encoded file content")
    mime_type: str | None = Field(
        default=None, alias="mimeType", description='MIME type (e.g. "text/plain", "application/pdf")'
    )


class AttachmentIdInput(ToolInput):
    attachment_id: str = _id("attachmentId", "The attachment ID")


class CardMemberInput(ToolInput):
    card_id: str = _id("cardId", "The card ID")
    user_id: str = _id("userId", "The user ID")


class AddCommentInput(ToolInput):
    card_id: str = _id("cardId", "The card ID")
    text: str = Field(description="Comment text (supports Markdown)")


class CommentIdInput(ToolInput):
    comment_id: str = _id("commentId", "The comment ID")


class CreateCustomFieldGroupInput(ToolInput):
    board_id: str = _id("boardId", "The board ID")
    name: str = Field(description="Custom field group name")
    position: float | None = _position("Position of the group (optional)")


class UpdateCustomFieldGroupInput(ToolInput):
    group_id: str = _id("groupId", "The custom field group ID")
    name: str | None = Field(default=None, description="New name for the group")
    position: float | None = _position("New position for the group")


class GroupIdInput(ToolInput):
    group_id: str = _id("groupId", "The custom field group ID")


class CreateCustomFieldInput(ToolInput):
    group_id: str = _id("groupId", "The custom field group ID")
    name: str = Field(description='The field name (e.g. "Story Points", "Sprint")')
    position: float | None = _position("Position of the field (optional)")


class UpdateCustomFieldInput(ToolInput):
    field_id: str = _id("fieldId", "The custom field ID")
    name: str | None = Field(default=None, description="New name for the field")
    position: float | None = _position("New position for the field")
    show_on_front_of_card: bool | None = Field(
        default=None,
        alias="showOnFrontOfCard",
        description="Whether to show the value on the front of the card",
    )


class FieldIdInput(ToolInput):
    field_id: str = _id("fieldId", "The custom field ID")


class CustomFieldValueInput(ToolInput):
    card_id: str = _id("cardId", "The card ID")
    group_id: str = _id("groupId", "The custom field group ID")
    field_id: str = _id("fieldId", "The custom field ID")


class SetCustomFieldValueInput(CustomFieldValueInput):
    content: str = Field(description="The value to set")


# Handlers


async def _update_card(client: PlankaClient, args: UpdateCardInput) -> Any:
    fields = args.changes("card_id", "stopwatch")
    if args.due_date == "":
        fields["dueDate"] = None
    if args.stopwatch is not None:
        # startedAt must stay in the payload even when null
        fields["stopwatch"] = args.stopwatch.model_dump(by_alias=True)
    return await client.update_card(args.card_id, **fields)


async def _delete_project(client: PlankaClient, args: ProjectIdInput) -> str:
    await client.delete_project(args.project_id)
    return f"Project {args.project_id} deleted successfully"


async def _delete_board(client: PlankaClient, args: BoardIdInput) -> str:
    await client.delete_board(args.board_id)
    return f"Board {args.board_id} deleted successfully"


async def _delete_list(client: PlankaClient, args: ListIdInput) -> str:
    await client.delete_list(args.list_id)
    return f"List {args.list_id} deleted successfully"


async def _delete_card(client: PlankaClient, args: CardIdInput) -> str:
    await client.delete_card(args.card_id)
    return f"Card {args.card_id} deleted successfully"


async def _add_label_to_card(client: PlankaClient, args: CardLabelInput) -> str:
    await client.add_label_to_card(args.card_id, args.label_id)
    return f"Label {args.label_id} added to card {args.card_id}"


async def _remove_label_from_card(client: PlankaClient, args: CardLabelInput) -> str:
    await client.remove_label_from_card(args.card_id, args.label_id)
    return f"Label {args.label_id} removed from card {args.card_id}"


async def _delete_task_list(client: PlankaClient, args: TaskListIdInput) -> str:
    await client.delete_task_list(args.task_list_id)
    return f"Task list {args.task_list_id} deleted successfully"


async def _delete_task(client: PlankaClient, args: TaskIdInput) -> str:
    await client.delete_task(args.task_id)
    return f"Task {args.task_id} deleted successfully"


async def _delete_attachment(client: PlankaClient, args: AttachmentIdInput) -> str:
    await client.delete_attachment(args.attachment_id)
    return f"Attachment {args.attachment_id} deleted successfully"


async def _add_card_member(client: PlankaClient, args: CardMemberInput) -> str:
    await client.add_card_member(args.card_id, args.user_id)
    return f"User {args.user_id} added to card {args.card_id}"


async def _remove_card_member(client: PlankaClient, args: CardMemberInput) -> str:
    await client.remove_card_member(args.card_id, args.user_id)
    return f"User {args.user_id} removed from card {args.card_id}"


async def _delete_comment(client: PlankaClient, args: CommentIdInput) -> str:
    await client.delete_comment(args.comment_id)
    return f"Comment {args.comment_id} deleted successfully"


async def _delete_custom_field_group(client: PlankaClient, args: GroupIdInput) -> str:
    await client.delete_custom_field_group(args.group_id)
    return f"Custom field group {args.group_id} deleted successfully"


async def _delete_custom_field(client: PlankaClient, args: FieldIdInput) -> str:
    await client.delete_custom_field(args.field_id)
    return f"Custom field {args.field_id} deleted successfully"


async def _delete_custom_field_value(client: PlankaClient, args: CustomFieldValueInput) -> str:
    await client.delete_custom_field_value(args.card_id, args.group_id, args.field_id)
    return f"Custom field value removed from card {args.card_id}"


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_model: type[ToolInput]
    handler: Callable[[PlankaClient, Any], Awaitable[Any]]

    def to_tool(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_model.model_json_schema(by_alias=True),
        )


TOOLS: tuple[ToolDefinition, ...] = (
    # Projects
    ToolDefinition(
        "list_projects",
        "List all projects in Planka",
        NoInput,
        lambda client, args: client.get_projects(),
    ),
    ToolDefinition(
        "get_project",
        "Get details of a specific project",
        ProjectIdInput,
        lambda client, args: client.get_project(args.project_id),
    ),
    ToolDefinition(
        "create_project",
        "Create a new project in Planka",
        CreateProjectInput,
        lambda client, args: client.create_project(args.name),
    ),
    ToolDefinition(
        "update_project",
        "Update an existing project",
        UpdateProjectInput,
        lambda client, args: client.update_project(args.project_id, **args.changes("project_id")),
    ),
    ToolDefinition(
        "delete_project",
        "Delete a project permanently. IMPORTANT: The project must have no boards - delete "
        "all boards first using delete_board, otherwise this will fail with a 422 error.",
        ProjectIdInput,
        _delete_project,
    ),
    # Boards
    ToolDefinition(
        "list_boards",
        "List all boards in a project",
        ProjectIdInput,
        lambda client, args: client.get_boards(args.project_id),
    ),
    ToolDefinition(
        "get_board",
        "Get full board details including all lists and cards. "
        "Use this to get an overview of a complete board.",
        BoardIdInput,
        lambda client, args: client.get_board(args.board_id),
    ),
    ToolDefinition(
        "create_board",
        "Create a new board inside a project",
        CreateBoardInput,
        lambda client, args: client.create_board(args.project_id, args.name, args.position),
    ),
    ToolDefinition(
        "update_board",
        "Update a board name or position",
        UpdateBoardInput,
        lambda client, args: client.update_board(args.board_id, **args.changes("board_id")),
    ),
    ToolDefinition(
        "delete_board",
        "Delete a board and all its lists and cards",
        BoardIdInput,
        _delete_board,
    ),
    # Lists
    ToolDefinition(
        "create_list",
        "Create a new list (column) in a board",
        CreateListInput,
        lambda client, args: client.create_list(args.board_id, args.name, args.position),
    ),
    ToolDefinition(
        "update_list",
        "Update a list name or position",
        UpdateListInput,
        lambda client, args: client.update_list(args.list_id, **args.changes("list_id")),
    ),
    ToolDefinition(
        "delete_list",
        "Delete a list and all its cards",
        ListIdInput,
        _delete_list,
    ),
    # Cards
    ToolDefinition(
        "get_card",
        "Get full details of a card including labels, tasks (checklist), and attachments",
        CardIdInput,
        lambda client, args: client.get_card(args.card_id),
    ),
    ToolDefinition(
        "create_card",
        "Create a new card in a list",
        CreateCardInput,
        lambda client, args: client.create_card(
            args.list_id,
            args.name,
            description=args.description,
            due_date=args.due_date,
            position=args.position,
        ),
    ),
    ToolDefinition(
        "update_card",
        "Update card details such as name, description, due date, or stopwatch",
        UpdateCardInput,
        _update_card,
    ),
    ToolDefinition(
        "move_card",
        "Move a card to a different list (column), optionally setting its position",
        MoveCardInput,
        lambda client, args: client.move_card(args.card_id, args.list_id, args.position),
    ),
    ToolDefinition(
        "delete_card",
        "Delete a card permanently",
        CardIdInput,
        _delete_card,
    ),
    # Labels
    ToolDefinition(
        "add_label_to_card",
        "Add an existing label to a card",
        CardLabelInput,
        _add_label_to_card,
    ),
    ToolDefinition(
        "remove_label_from_card",
        "Remove a label from a card",
        CardLabelInput,
        _remove_label_from_card,
    ),
    ToolDefinition(
        "create_label",
        "Create a new label on a board",
        CreateLabelInput,
        lambda client, args: client.create_label(args.board_id, args.name, args.color),
    ),
    # Task lists and tasks
    ToolDefinition(
        "create_task_list",
        "Create a task list (checklist) on a card",
        CreateTaskListInput,
        lambda client, args: client.create_task_list(args.card_id, args.name, args.position),
    ),
    ToolDefinition(
        "update_task_list",
        "Update a task list name or position",
        UpdateTaskListInput,
        lambda client, args: client.update_task_list(
            args.task_list_id, **args.changes("task_list_id")
        ),
    ),
    ToolDefinition(
        "delete_task_list",
        "Delete a task list and all its tasks",
        TaskListIdInput,
        _delete_task_list,
    ),
    ToolDefinition(
        "create_task",
        "Create a task in a task list on a card",
        CreateTaskInput,
        lambda client, args: client.create_task(args.task_list_id, args.name, args.position),
    ),
    ToolDefinition(
        "update_task",
        "Update a checklist task (rename or mark as completed)",
        UpdateTaskInput,
        lambda client, args: client.update_task(args.task_id, **args.changes("task_id")),
    ),
    ToolDefinition(
        "delete_task",
        "Delete a checklist task from a card",
        TaskIdInput,
        _delete_task,
    ),
    # Attachments
    ToolDefinition(
        "upload_attachment",
        "Upload a file as an attachment to a card. "
        "Provide the file content as a base64-encoded string.",
        UploadAttachmentInput,
        lambda client, args: client.upload_attachment_base64(
            args.card_id, args.file_content, args.filename, args.mime_type
        ),
    ),
    ToolDefinition(
        "delete_attachment",
        "Delete an attachment from a card",
        AttachmentIdInput,
        _delete_attachment,
    ),
    # Members
    ToolDefinition(
        "add_card_member",
        "Add a user as a member of a card",
        CardMemberInput,
        _add_card_member,
    ),
    ToolDefinition(
        "remove_card_member",
        "Remove a user from a card",
        CardMemberInput,
        _remove_card_member,
    ),
    # Comments
    ToolDefinition(
        "get_comments",
        "Get all comments on a card",
        CardIdInput,
        lambda client, args: client.get_comments(args.card_id),
    ),
    ToolDefinition(
        "add_comment",
        "Add a comment to a card",
        AddCommentInput,
        lambda client, args: client.add_comment(args.card_id, args.text),
    ),
    ToolDefinition(
        "delete_comment",
        "Delete a comment from a card",
        CommentIdInput,
        _delete_comment,
    ),
    # Custom fields
    ToolDefinition(
        "create_custom_field_group",
        "Create a custom field group on a board (groups contain one or more custom fields)",
        CreateCustomFieldGroupInput,
        lambda client, args: client.create_custom_field_group(
            args.board_id, args.name, args.position
        ),
    ),
    ToolDefinition(
        "update_custom_field_group",
        "Update a custom field group name or position",
        UpdateCustomFieldGroupInput,
        lambda client, args: client.update_custom_field_group(
            args.group_id, **args.changes("group_id")
        ),
    ),
    ToolDefinition(
        "delete_custom_field_group",
        "Delete a custom field group and all its fields",
        GroupIdInput,
        _delete_custom_field_group,
    ),
    ToolDefinition(
        "create_custom_field",
        "Create a custom field inside a custom field group",
        CreateCustomFieldInput,
        lambda client, args: client.create_custom_field(args.group_id, args.name, args.position),
    ),
    ToolDefinition(
        "update_custom_field",
        "Update a custom field name, position, or whether it shows on the front of the card",
        UpdateCustomFieldInput,
        lambda client, args: client.update_custom_field(args.field_id, **args.changes("field_id")),
    ),
    ToolDefinition(
        "delete_custom_field",
        "Delete a custom field definition",
        FieldIdInput,
        _delete_custom_field,
    ),
    ToolDefinition(
        "set_custom_field_value",
        "Set or update a custom field value on a card",
        SetCustomFieldValueInput,
        lambda client, args: client.set_custom_field_value(
            args.card_id, args.group_id, args.field_id, args.content
        ),
    ),
    ToolDefinition(
        "delete_custom_field_value",
        "Remove a custom field value from a card",
        CustomFieldValueInput,
        _delete_custom_field_value,
    ),
)

TOOLS_BY_NAME: dict[str, ToolDefinition] = {tool.name: tool for tool in TOOLS}


async def call_tool(
    client: PlankaClient, name: str, arguments: dict[str, Any] | None
) -> list[TextContent]:
    """Validate ``arguments`` against the tool's input model and run it."""
    definition = TOOLS_BY_NAME.get(name)
    if definition is None:
        raise ToolError(f"Unknown tool: {name}")

    try:
        args = definition.input_model.model_validate(arguments or {})
    except pydantic.ValidationError as e:
        raise ToolError(f"Invalid arguments for {name}: {e}") from e

    logger.info(f"=== {name} called ===")
    try:
        result = await definition.handler(client, args)
    except Exception as e:
        logger.error(f"Exception in {name}: {e}", exc_info=True)
        raise

    text = result if isinstance(result, str) else json.dumps(result, indent=2)
    return [TextContent(type="text", text=text)]

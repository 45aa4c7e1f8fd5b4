"""Shapes of the Planka entities passed through the client.

The client hands plain dicts straight from the backend JSON; these TypedDicts
document the fields the server relies on.
"""

from typing import Any, TypedDict

# Appending without an explicit position puts the entity at this sparse slot.
DEFAULT_POSITION = 65535


class Project(TypedDict, total=False):
    id: str
    name: str
    background: Any
    backgroundImage: Any
    createdAt: str
    updatedAt: str | None


class Board(TypedDict, total=False):
    id: str
    name: str
    position: float
    projectId: str
    createdAt: str
    updatedAt: str | None


class List(TypedDict, total=False):
    id: str
    name: str
    type: str
    position: float | None
    boardId: str
    createdAt: str
    updatedAt: str | None


class Card(TypedDict, total=False):
    id: str
    name: str
    type: str
    description: str | None
    dueDate: str | None
    isDueDateCompleted: bool
    position: float
    boardId: str
    listId: str
    creatorUserId: str
    createdAt: str
    updatedAt: str | None


class Label(TypedDict, total=False):
    id: str
    name: str | None
    color: str
    position: float
    boardId: str


class TaskList(TypedDict, total=False):
    id: str
    name: str
    position: float
    cardId: str


class Task(TypedDict, total=False):
    id: str
    name: str
    isCompleted: bool
    position: float
    taskListId: str


class Attachment(TypedDict, total=False):
    id: str
    name: str
    type: str
    url: str
    cardId: str
    createdAt: str


class Comment(TypedDict, total=False):
    id: str
    text: str
    cardId: str
    userId: str
    createdAt: str


class User(TypedDict, total=False):
    id: str
    name: str
    username: str
    email: str
    avatarUrl: str | None


class CustomFieldGroup(TypedDict, total=False):
    id: str
    name: str
    position: float
    boardId: str | None
    cardId: str | None
    baseCustomFieldGroupId: str | None


class CustomField(TypedDict, total=False):
    id: str
    name: str
    position: float
    showOnFrontOfCard: bool
    customFieldGroupId: str


class CustomFieldValue(TypedDict, total=False):
    id: str
    content: str
    cardId: str
    customFieldGroupId: str
    customFieldId: str


class ListWithCards(List, total=False):
    cards: list[Card]


class BoardFull(Board, total=False):
    lists: list[ListWithCards]
    labels: list[Label]
    members: list[User]


class CardDetails(Card, total=False):
    labels: list[dict[str, Any]]
    tasks: list[Task]
    attachments: list[Attachment]

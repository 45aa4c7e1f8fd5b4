"""Aggregate views rebuilt from Planka's flat ``item`` + ``included`` responses."""

from typing import Any

from .models import BoardFull, CardDetails


def _position_key(entity: dict[str, Any]) -> tuple[bool, float]:
    # Archive and trash lists carry a null position; keep them last.
    position = entity.get("position")
    return (position is None, position or 0)


def sort_by_position(entities: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Stable ascending sort on ``position``; ties keep backend order."""
    return sorted(entities, key=_position_key)


def _included(payload: dict[str, Any], key: str) -> list[dict[str, Any]]:
    included = payload.get("included") or {}
    return list(included.get(key) or [])


def build_board_full(payload: dict[str, Any]) -> BoardFull:
    """Nest lists and cards under the board returned by ``GET /api/boards/:id``.

    Cards are assigned to their list by ``listId`` before sorting, so a card
    never shows up under a list it does not belong to.
    """
    cards = _included(payload, "cards")
    lists = []
    for list_ in sort_by_position(_included(payload, "lists")):
        list_cards = [card for card in cards if card.get("listId") == list_.get("id")]
        lists.append({**list_, "cards": sort_by_position(list_cards)})

    board: BoardFull = {
        **payload["item"],
        "lists": lists,
        "labels": _included(payload, "labels"),
        "members": _included(payload, "users"),
    }
    return board


def build_card_details(payload: dict[str, Any]) -> CardDetails:
    """Attach labels, tasks and attachments to the card; the backend already scopes them."""
    card: CardDetails = {
        **payload["item"],
        "labels": _included(payload, "cardLabels"),
        "tasks": _included(payload, "tasks"),
        "attachments": _included(payload, "attachments"),
    }
    return card

"""Unit tests for the board and card aggregate views."""

from typing import Any

from planka_mcp.views import build_board_full, build_card_details, sort_by_position


def board_payload(**included: Any) -> dict[str, Any]:
    return {"item": {"id": "b1", "name": "Board"}, "included": included}


class TestSortByPosition:
    def test_ascending(self) -> None:
        entities = [{"id": "c", "position": 30}, {"id": "a", "position": 10}, {"id": "b", "position": 20}]
        assert [e["id"] for e in sort_by_position(entities)] == ["a", "b", "c"]

    def test_ties_keep_input_order(self) -> None:
        entities = [
            {"id": "first", "position": 5},
            {"id": "second", "position": 5},
            {"id": "low", "position": 1},
        ]
        assert [e["id"] for e in sort_by_position(entities)] == ["low", "first", "second"]

    def test_null_positions_sort_last(self) -> None:
        entities = [
            {"id": "archive", "position": None},
            {"id": "todo", "position": 65535},
            {"id": "trash"},
        ]
        assert [e["id"] for e in sort_by_position(entities)] == ["todo", "archive", "trash"]

    def test_does_not_mutate_input(self) -> None:
        entities = [{"id": "b", "position": 2}, {"id": "a", "position": 1}]
        sort_by_position(entities)
        assert [e["id"] for e in entities] == ["b", "a"]


class TestBuildBoardFull:
    def test_lists_and_cards_sorted(self) -> None:
        board = build_board_full(
            board_payload(
                lists=[
                    {"id": "L1", "position": 30},
                    {"id": "L2", "position": 10},
                    {"id": "L3", "position": 20},
                ],
                cards=[
                    {"id": "C1", "listId": "L2", "position": 2},
                    {"id": "C2", "listId": "L2", "position": 1},
                ],
            )
        )

        assert [lst["id"] for lst in board["lists"]] == ["L2", "L3", "L1"]
        assert [card["id"] for card in board["lists"][0]["cards"]] == ["C2", "C1"]
        assert board["lists"][1]["cards"] == []
        assert board["lists"][2]["cards"] == []

    def test_cards_only_under_their_list(self) -> None:
        board = build_board_full(
            board_payload(
                lists=[{"id": "L1", "position": 1}, {"id": "L2", "position": 2}],
                cards=[
                    {"id": "C1", "listId": "L1", "position": 1},
                    {"id": "C2", "listId": "L2", "position": 1},
                    {"id": "orphan", "listId": "gone", "position": 1},
                ],
            )
        )

        for lst in board["lists"]:
            assert all(card["listId"] == lst["id"] for card in lst["cards"])
        all_cards = [card["id"] for lst in board["lists"] for card in lst["cards"]]
        assert all_cards == ["C1", "C2"]

    def test_labels_and_members_keep_backend_order(self) -> None:
        board = build_board_full(
            board_payload(
                labels=[{"id": "z", "position": 2}, {"id": "a", "position": 1}],
                users=[{"id": "u2"}, {"id": "u1"}],
            )
        )

        assert [label["id"] for label in board["labels"]] == ["z", "a"]
        assert [user["id"] for user in board["members"]] == ["u2", "u1"]

    def test_board_fields_preserved(self) -> None:
        board = build_board_full(board_payload())
        assert board["id"] == "b1"
        assert board["name"] == "Board"
        assert board["lists"] == []
        assert board["labels"] == []
        assert board["members"] == []

    def test_missing_included(self) -> None:
        board = build_board_full({"item": {"id": "b1"}})
        assert board["lists"] == []

    def test_idempotent(self) -> None:
        payload = board_payload(
            lists=[{"id": "L1", "position": 2}, {"id": "L2", "position": 1}],
            cards=[{"id": "C1", "listId": "L1", "position": 1}],
            labels=[{"id": "lab"}],
            users=[{"id": "u"}],
        )
        assert build_board_full(payload) == build_board_full(payload)


class TestBuildCardDetails:
    def test_attaches_included_collections(self) -> None:
        card = build_card_details(
            {
                "item": {"id": "c1", "name": "Card", "listId": "L1"},
                "included": {
                    "cardLabels": [{"id": "cl1", "cardId": "c1", "labelId": "lab1"}],
                    "tasks": [{"id": "t1", "name": "Step"}],
                    "attachments": [{"id": "a1", "name": "file.txt"}],
                    "cardMemberships": [{"id": "m1"}],
                },
            }
        )

        assert card["name"] == "Card"
        assert card["labels"] == [{"id": "cl1", "cardId": "c1", "labelId": "lab1"}]
        assert card["tasks"] == [{"id": "t1", "name": "Step"}]
        assert card["attachments"] == [{"id": "a1", "name": "file.txt"}]
        assert "cardMemberships" not in card

    def test_empty_included(self) -> None:
        card = build_card_details({"item": {"id": "c1"}, "included": {}})
        assert card == {"id": "c1", "labels": [], "tasks": [], "attachments": []}

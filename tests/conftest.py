from __future__ import annotations

import copy
import re

import pytest
from botocore.exceptions import ClientError

from tournament_core import (
    Actor,
    EngineConfig,
    Role,
    TournamentLifecycle,
    TournamentStorage,
)

_CLAUSE_SPLIT = re.compile(r"\s*\b(SET|ADD)\s+")


def _conditional_failure(operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {
                "Code": "ConditionalCheckFailedException",
                "Message": "The conditional request failed",
            }
        },
        operation,
    )


class FakeTable:
    """In-memory stand-in for the DynamoDB table calls the storage makes."""

    def __init__(self) -> None:
        self.items: dict[tuple[str, str], dict[str, object]] = {}
        self.fail_puts_with: ClientError | None = None
        self.page_size: int | None = None
        self.query_calls = 0

    def _check(self, item, condition, names, values, operation) -> None:
        if condition is None:
            return
        for clause in condition.split(" AND "):
            clause = clause.strip()
            if clause == "attribute_not_exists(pk)":
                passed = item is None
            elif clause == "attribute_exists(pk)":
                passed = item is not None
            elif "<" in clause:
                name, placeholder = (part.strip() for part in clause.split("<"))
                passed = item is not None and item.get(names[name], 0) < values[
                    placeholder
                ]
            else:
                name, placeholder = (part.strip() for part in clause.split("="))
                passed = item is not None and item.get(names[name]) == values[
                    placeholder
                ]
            if not passed:
                raise _conditional_failure(operation)

    def get_item(self, *, Key):
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def put_item(self, *, Item, ConditionExpression=None):
        if self.fail_puts_with is not None:
            raise self.fail_puts_with
        key = (Item["pk"], Item["sk"])
        self._check(self.items.get(key), ConditionExpression, {}, {}, "PutItem")
        self.items[key] = copy.deepcopy(Item)

    def update_item(
        self,
        *,
        Key,
        UpdateExpression,
        ConditionExpression=None,
        ExpressionAttributeNames=None,
        ExpressionAttributeValues=None,
        ReturnValues="NONE",
    ):
        names = ExpressionAttributeNames or {}
        values = ExpressionAttributeValues or {}
        key = (Key["pk"], Key["sk"])
        current = self.items.get(key)
        self._check(current, ConditionExpression, names, values, "UpdateItem")
        item = copy.deepcopy(current) if current is not None else dict(Key)

        parts = _CLAUSE_SPLIT.split(UpdateExpression)[1:]
        for action, body in zip(parts[::2], parts[1::2], strict=True):
            for assignment in body.split(","):
                if action == "SET":
                    name, placeholder = (p.strip() for p in assignment.split("="))
                    item[names[name]] = values[placeholder]
                else:
                    name, placeholder = assignment.split()
                    field = names[name]
                    item[field] = item.get(field, 0) + values[placeholder]

        self.items[key] = item
        if ReturnValues == "ALL_NEW":
            return {"Attributes": copy.deepcopy(item)}
        return {}

    def query(
        self,
        *,
        KeyConditionExpression,
        Select="ALL_ATTRIBUTES",
        ExclusiveStartKey=None,
        **_kwargs,
    ):
        self.query_calls += 1
        pk_value = None
        sk_prefix = ""
        for condition in KeyConditionExpression._values:  # type: ignore[attr-defined]
            key, value = condition._values  # type: ignore[attr-defined]
            if key.name == "pk":
                pk_value = value
            elif key.name == "sk":
                sk_prefix = value
        keys = [
            key
            for key in sorted(self.items)
            if key[0] == pk_value and key[1].startswith(sk_prefix)
        ]
        if ExclusiveStartKey is not None:
            start = (ExclusiveStartKey["pk"], ExclusiveStartKey["sk"])
            keys = [key for key in keys if key > start]
        last_key = None
        if self.page_size is not None and len(keys) > self.page_size:
            keys = keys[: self.page_size]
            last_key = {"pk": keys[-1][0], "sk": keys[-1][1]}

        resp: dict[str, object] = {"Count": len(keys)}
        if Select != "COUNT":
            resp["Items"] = [copy.deepcopy(self.items[key]) for key in keys]
        if last_key is not None:
            resp["LastEvaluatedKey"] = last_key
        return resp

    def delete_item(self, *, Key, ConditionExpression=None):
        key = (Key["pk"], Key["sk"])
        self._check(self.items.get(key), ConditionExpression, {}, {}, "DeleteItem")
        self.items.pop(key, None)

    def items_with_prefix(self, prefix: str) -> list[dict[str, object]]:
        return [
            item
            for key, item in sorted(self.items.items())
            if key[1].startswith(prefix)
        ]


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def storage(table) -> TournamentStorage:
    return TournamentStorage(table)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(table_name="tournaments")


@pytest.fixture
def lifecycle(storage, config) -> TournamentLifecycle:
    return TournamentLifecycle(storage, config)


@pytest.fixture
def admin() -> Actor:
    return Actor("admin", Role.ADMIN)


@pytest.fixture
def make_tournament(lifecycle, admin):
    """Create an open tournament and enroll the given players."""

    def _make(players, **kwargs):
        tournament = lifecycle.create_tournament(
            admin, "Weekend Cup", open_enrollment=True, **kwargs
        )
        for user_id in players:
            lifecycle.enroll(tournament.tournament_id, Actor(user_id))
        return tournament.tournament_id

    return _make


@pytest.fixture
def win_game(lifecycle):
    """Play one game of a match, hosted by ``host_id`` and won by ``winner_id``."""

    def _play(match, winner_id, host_id=None):
        host_id = host_id or match.a_id
        host = Actor(host_id)
        opponent = Actor(match.opponent_of(host_id))
        game = lifecycle.create_game(match.tournament_id, match.match_id, host)
        lifecycle.accept_game(match.tournament_id, match.match_id, game.index, opponent)
        lifecycle.report_game(
            match.tournament_id, match.match_id, game.index, winner_id, host
        )
        return lifecycle.confirm_game(
            match.tournament_id, match.match_id, game.index, opponent
        )

    return _play


@pytest.fixture
def win_match(win_game):
    """Resolve a match 2-0 for ``winner_id``."""

    def _win(match, winner_id):
        win_game(match, winner_id)
        return win_game(match, winner_id)

    return _win

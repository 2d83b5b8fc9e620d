import pytest
from botocore.exceptions import ClientError

from tournament_core import (
    InvalidStateError,
    NotFoundError,
    TournamentStorage,
)
from tournament_core.models import (
    AuditEvent,
    Enrollment,
    GameStatus,
    Match,
    MatchGame,
    MatchStage,
    MatchStatus,
    Tournament,
    TournamentStatus,
)


def _tournament(status=TournamentStatus.DRAFT) -> Tournament:
    return Tournament(
        tournament_id="t1",
        title="Weekend Cup",
        admin_id="admin",
        status=status,
        created_at="2024-01-01T00:00:00.000000Z",
    )


def _match(match_id="G01-01", stage=MatchStage.GROUP, **kwargs) -> Match:
    return Match(
        match_id=match_id,
        tournament_id="t1",
        round=1,
        stage=stage,
        a_id="alice",
        b_id="bob",
        **kwargs,
    )


def test_ensure_table_requires_table():
    storage = TournamentStorage(None)
    with pytest.raises(RuntimeError):
        storage.get_tournament("t1")


def test_tournament_round_trip(storage, table):
    storage.save_tournament(_tournament())

    item = table.items[("TOURNAMENT#t1", "META")]
    assert item["status"] == "DRAFT"
    assert "total_rounds" not in item

    loaded = storage.require_tournament("t1")
    assert loaded.title == "Weekend Cup"
    assert loaded.status is TournamentStatus.DRAFT


def test_require_tournament_raises_not_found(storage):
    with pytest.raises(NotFoundError):
        storage.require_tournament("missing")


def test_transition_tournament_checks_current_status(storage):
    storage.save_tournament(_tournament())

    updated = storage.transition_tournament(
        "t1", TournamentStatus.DRAFT, TournamentStatus.GROUPS, current_round=1
    )
    assert updated.status is TournamentStatus.GROUPS
    assert updated.current_round == 1

    with pytest.raises(InvalidStateError):
        storage.transition_tournament(
            "t1", TournamentStatus.OPEN, TournamentStatus.GROUPS
        )


def test_transition_tournament_rejects_illegal_move(storage):
    storage.save_tournament(_tournament())
    with pytest.raises(InvalidStateError):
        storage.transition_tournament(
            "t1", TournamentStatus.DRAFT, TournamentStatus.FINISHED
        )


def test_increment_current_round_is_atomic_add(storage):
    storage.save_tournament(_tournament())
    storage.increment_current_round("t1")
    assert storage.increment_current_round("t1").current_round == 2


def test_enrollment_is_unique_per_user(storage):
    first = Enrollment("t1", "alice", "2024-01-01T00:00:00.000000Z")
    assert storage.save_enrollment(first) is True
    assert storage.save_enrollment(first) is False
    storage.save_enrollment(Enrollment("t1", "bob", "2024-01-01T00:00:01.000000Z"))

    assert storage.get_enrollment("t1", "bob").joined_at.endswith("01.000000Z")
    assert storage.get_enrollment("t1", "carol") is None
    assert [e.user_id for e in storage.list_enrollments("t1")] == ["alice", "bob"]


def test_prefix_queries_follow_last_evaluated_key(storage, table):
    table.page_size = 2
    for position in range(5):
        storage.save_enrollment(
            Enrollment("t1", f"p{position:02d}", f"2024-01-01T00:00:0{position}Z")
        )

    enrolled = [entry.user_id for entry in storage.list_enrollments("t1")]

    assert enrolled == ["p00", "p01", "p02", "p03", "p04"]
    assert table.query_calls == 3


def test_enrollment_counter_stops_at_slots_limit(storage):
    storage.save_tournament(_tournament(TournamentStatus.OPEN))

    assert storage.reserve_enrollment_slot("t1", 2).enrolled_count == 1
    assert storage.reserve_enrollment_slot("t1", 2).enrolled_count == 2
    assert storage.reserve_enrollment_slot("t1", 2) is None
    assert storage.release_enrollment_slot("t1").enrolled_count == 1
    assert storage.reserve_enrollment_slot("t1", 2).enrolled_count == 2
    assert storage.reserve_enrollment_slot("t1").enrolled_count == 3


def test_enrollment_counter_requires_open_tournament(storage):
    storage.save_tournament(_tournament())
    assert storage.reserve_enrollment_slot("t1", 8) is None
    assert storage.reserve_enrollment_slot("missing", 8) is None
    assert storage.require_tournament("t1").enrolled_count == 0


def test_directory_entry_follows_status(storage, table):
    storage.save_tournament(_tournament())
    assert [item["sk"] for item in table.items_with_prefix("TOURNAMENT#")] == [
        "TOURNAMENT#DRAFT#t1"
    ]

    storage.transition_tournament("t1", TournamentStatus.DRAFT, TournamentStatus.OPEN)

    assert [item["sk"] for item in table.items_with_prefix("TOURNAMENT#")] == [
        "TOURNAMENT#OPEN#t1"
    ]
    assert [entry.tournament_id for entry in storage.list_tournaments()] == ["t1"]
    assert storage.list_tournaments(TournamentStatus.DRAFT) == []
    (listing,) = storage.list_tournaments(TournamentStatus.OPEN)
    assert listing.title == "Weekend Cup"
    assert listing.status is TournamentStatus.OPEN


def test_list_tournaments_orders_by_creation(storage):
    for tournament_id, created_at in (("late", "2024-02-01"), ("early", "2024-01-01")):
        storage.save_tournament(
            Tournament(tournament_id, "Cup", "admin", created_at=created_at)
        )

    listed = [entry.tournament_id for entry in storage.list_tournaments()]
    assert listed == ["early", "late"]


def test_standing_reset_and_increment(storage):
    storage.reset_standing("t1", "alice")
    storage.increment_standing("t1", "alice", points=2, wins=1)
    updated = storage.increment_standing("t1", "alice", points=1, losses=1)

    assert (updated.points, updated.wins, updated.losses) == (3, 1, 1)

    reset = storage.reset_standing("t1", "alice")
    assert reset.points == 0
    assert storage.get_standing("t1", "alice").points == 0
    assert len(storage.list_standings("t1")) == 1


def test_increment_missing_standing_raises_not_found(storage):
    with pytest.raises(NotFoundError):
        storage.increment_standing("t1", "ghost", points=1)


def test_create_match_is_idempotent(storage):
    assert storage.create_match(_match()) is True
    assert storage.create_match(_match()) is False
    assert storage.count_matches("t1", MatchStage.GROUP) == 1


def test_list_matches_filters(storage):
    storage.create_match(_match("G01-01"))
    storage.create_match(_match("SF01-01", stage=MatchStage.SEMI_FINAL))
    storage.create_match(
        _match("G01-02", status=MatchStatus.FINISHED, winner_id="alice")
    )

    assert len(storage.list_matches("t1")) == 3
    group = storage.list_matches("t1", stage=MatchStage.GROUP)
    assert [m.match_id for m in group] == ["G01-01", "G01-02"]
    finished = storage.list_matches("t1", status=MatchStatus.FINISHED)
    assert [m.match_id for m in finished] == ["G01-02"]


def test_transition_match_returns_none_when_already_moved(storage):
    match = _match()
    storage.create_match(match)

    disputed = storage.transition_match(match, MatchStatus.DISPUTED)
    assert disputed.status is MatchStatus.DISPUTED
    assert storage.transition_match(match, MatchStatus.DISPUTED) is None


def test_transition_match_rejects_illegal_move(storage):
    match = _match()
    storage.create_match(match)
    with pytest.raises(InvalidStateError):
        storage.transition_match(match, MatchStatus.FINISHED)


def test_games_are_listed_in_index_order(storage):
    for index in (2, 1, 3):
        storage.create_game(MatchGame("t1", "G01-01", index, host_id="alice"))
    storage.create_game(MatchGame("t1", "G01-02", 1, host_id="bob"))

    games = storage.list_games("t1", "G01-01")
    assert [game.index for game in games] == [1, 2, 3]


def test_transition_game_detects_concurrent_change(storage):
    game = MatchGame("t1", "G01-01", 1, host_id="alice")
    storage.create_game(game)

    storage.transition_game(game, GameStatus.IN_PROGRESS)
    with pytest.raises(InvalidStateError):
        storage.transition_game(game, GameStatus.IN_PROGRESS)


def test_active_game_slot_is_exclusive(storage):
    assert storage.claim_active_game_slot("t1", "G01-01", 1) is True
    assert storage.claim_active_game_slot("t1", "G01-01", 2) is False
    assert storage.claim_active_game_slot("t1", "G01-02", 1) is True

    storage.release_active_game_slot("t1", "G01-01")
    assert storage.claim_active_game_slot("t1", "G01-01", 2) is True


def test_advancement_token_is_claimed_once(storage):
    assert storage.claim_advancement("t1", "KNOCKOUT", "now") is True
    assert storage.claim_advancement("t1", "KNOCKOUT", "later") is False


def test_other_client_errors_propagate(storage, table):
    table.fail_puts_with = ClientError(
        {"Error": {"Code": "ProvisionedThroughputExceededException"}}, "PutItem"
    )
    with pytest.raises(ClientError):
        storage.create_match(_match())


def test_audit_events_round_trip(storage):
    event = AuditEvent(
        tournament_id="t1",
        event_id="e1",
        action="Game accepted",
        entity="MatchGame",
        entity_id="G01-01#1",
        user_id="bob",
        created_at="2024-01-01T00:00:00.000000Z",
    )
    storage.append_audit(event)
    assert storage.list_audit_events("t1") == [event]


def test_resaving_tournament_replaces_directory_entry(storage):
    storage.save_tournament(_tournament())
    storage.save_tournament(_tournament(TournamentStatus.OPEN))

    listed = storage.list_tournaments()
    assert [(entry.tournament_id, entry.status) for entry in listed] == [
        ("t1", TournamentStatus.OPEN)
    ]

import json
from datetime import datetime, timedelta, timezone

import pytest

from leadmap.modules.scraping.constants import SessionStatus, status_from_token
from leadmap.modules.scraping.services.session_state_machine import (
    REJECTED_TERMINAL,
    SessionSnapshot,
    apply_callback,
    can_transition,
    cancel_transition,
    parse_callback_payload,
)
from leadmap.shared.utils.exceptions import InvalidCallbackError

NOW = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)


def snapshot(status="pending", **overrides):
    values = dict(
        id="sess-1",
        status=SessionStatus(status),
        version=1,
        started_at=NOW - timedelta(seconds=120),
    )
    values.update(overrides)
    return SessionSnapshot(**values)


# --- TOKENS & RANKS ---

@pytest.mark.parametrize("token,expected", [
    ("termine", SessionStatus.COMPLETED),
    ("TERMINE", SessionStatus.COMPLETED),
    ("done", SessionStatus.COMPLETED),
    ("echoue", SessionStatus.FAILED),
    ("error", SessionStatus.FAILED),
    ("en_cours", SessionStatus.IN_PROGRESS),
    ("queued", SessionStatus.IN_PROGRESS),
    ("", SessionStatus.IN_PROGRESS),
    (None, SessionStatus.IN_PROGRESS),
])
def test_status_from_token(token, expected):
    assert status_from_token(token) == expected


def test_can_transition_follows_rank_and_terminality():
    assert can_transition(SessionStatus.PENDING, SessionStatus.IN_PROGRESS)
    assert can_transition(SessionStatus.IN_PROGRESS, SessionStatus.IN_PROGRESS)
    assert can_transition(SessionStatus.IN_PROGRESS, SessionStatus.FAILED)
    assert not can_transition(SessionStatus.IN_PROGRESS, SessionStatus.PENDING)
    assert not can_transition(SessionStatus.COMPLETED, SessionStatus.FAILED)
    assert not can_transition(SessionStatus.FAILED, SessionStatus.COMPLETED)


# --- PAYLOAD PARSING ---

def test_parse_accepts_one_element_list_and_json_string_batch():
    batch = [{"Titre": "A", "Email": "a@a.fr"}, {"Titre": "B", "Email": "aucun_mail"}]
    update = parse_callback_payload([{
        "session_id": " sess-1 ",
        "statut": "termine",
        "lien_google_sheet": "https://docs.google.com/spreadsheets/d/x",
        "nom_feuille_google_sheet": "Leads",
        "count": "2",
        "json_donnee_scrappe": json.dumps(batch),
    }])

    assert update.session_id == "sess-1"
    assert update.status == SessionStatus.COMPLETED
    assert update.count == 2
    assert update.batch == batch
    assert update.emails_found == 1
    assert update.sheet_name == "Leads"
    assert update.batch_error is None


@pytest.mark.parametrize("payload", [
    [],
    "not an object",
    {"statut": "termine"},
    {"session_id": "   "},
    {"session_id": 42},
])
def test_parse_rejects_unusable_envelopes(payload):
    with pytest.raises(InvalidCallbackError):
        parse_callback_payload(payload)


def test_parse_rejects_non_numeric_count():
    with pytest.raises(InvalidCallbackError):
        parse_callback_payload({"session_id": "sess-1", "count": "many"})


def test_undecodable_batch_is_reported_not_raised():
    update = parse_callback_payload({
        "session_id": "sess-1",
        "statut": "termine",
        "json_donnee_scrappe": "[{broken",
    })

    assert update.status == SessionStatus.COMPLETED
    assert update.batch is None
    assert update.batch_error is not None


def test_batch_that_is_not_an_array_is_reported():
    update = parse_callback_payload({"session_id": "sess-1", "json_donnee_scrappe": '{"Titre": "A"}'})
    assert update.batch_error is not None


def test_reported_progress_is_clamped():
    update = parse_callback_payload({"session_id": "sess-1", "progress_percentage": 150})
    assert update.progress_percentage == 100


def test_negative_count_is_clamped():
    with_batch = parse_callback_payload({"session_id": "s", "count": -5, "json_donnee_scrappe": [{}, {}]})
    without_batch = parse_callback_payload({"session_id": "s", "count": "-3"})

    assert with_batch.count == 0
    assert with_batch.results_count == 2
    assert without_batch.count == 0
    assert without_batch.results_count is None


def test_results_count_prefers_worker_count_then_batch_length():
    with_count = parse_callback_payload({"session_id": "s", "count": 7, "json_donnee_scrappe": [{}]})
    without_count = parse_callback_payload({"session_id": "s", "count": 0, "json_donnee_scrappe": [{}, {}]})
    neither = parse_callback_payload({"session_id": "s"})

    assert with_count.results_count == 7
    assert without_count.results_count == 2
    assert neither.results_count is None


# --- REDUCER ---

def test_running_callback_advances_pending_session():
    update = parse_callback_payload({"session_id": "sess-1", "statut": "en_cours", "progress_percentage": 30})
    transition = apply_callback(snapshot("pending", started_at=None), update, NOW)

    assert transition.applied
    assert transition.changes["status"] == "in_progress"
    assert transition.changes["progress_percentage"] == 30
    assert transition.changes["started_at"] == NOW


def test_running_callback_never_lowers_counters_or_progress():
    current = snapshot("in_progress", actual_results=5, emails_found=3, progress_percentage=60)
    update = parse_callback_payload({
        "session_id": "sess-1",
        "statut": "en_cours",
        "count": 2,
        "progress_percentage": 20,
        "json_donnee_scrappe": [{"Titre": "A", "Email": "a@a.fr"}],
    })
    transition = apply_callback(current, update, NOW)

    assert transition.changes["actual_results"] == 5
    assert transition.changes["emails_found"] == 3
    assert transition.changes["progress_percentage"] == 60


def test_completion_sets_final_fields():
    update = parse_callback_payload({
        "session_id": "sess-1",
        "statut": "termine",
        "count": 2,
        "json_donnee_scrappe": [{"Titre": "A", "Email": "a@a.fr"}, {"Titre": "B", "Email": "aucun_mail"}],
    })
    transition = apply_callback(snapshot("in_progress"), update, NOW)

    assert transition.applied
    assert transition.changes["status"] == "completed"
    assert transition.changes["progress_percentage"] == 100
    assert transition.changes["current_step"] == "Finalisation"
    assert transition.changes["completed_at"] == NOW
    assert transition.changes["duration_seconds"] == 120
    assert transition.changes["actual_results"] == 2
    assert transition.changes["emails_found"] == 1


def test_failure_keeps_counters_and_records_reason():
    update = parse_callback_payload({"session_id": "sess-1", "statut": "echoue", "count": 9})
    transition = apply_callback(snapshot("in_progress", actual_results=4), update, NOW)

    assert transition.changes["status"] == "failed"
    assert transition.changes["error_message"] == "Worker reported failure"
    assert "actual_results" not in transition.changes


def test_late_running_callback_after_completion_is_ignored():
    late = parse_callback_payload({"session_id": "sess-1", "statut": "en_cours", "progress_percentage": 10})
    transition = apply_callback(snapshot("completed", version=3), late, NOW)

    assert not transition.applied
    assert transition.reason == REJECTED_TERMINAL
    assert transition.changes == {}


def test_failed_session_ignores_completion():
    done = parse_callback_payload({"session_id": "sess-1", "statut": "termine"})
    assert not apply_callback(snapshot("failed"), done, NOW).applied


# --- CANCELLATION ---

def test_cancel_fails_running_session():
    transition = cancel_transition(snapshot("in_progress"), "Stopped by user", NOW)

    assert transition.applied
    assert transition.changes["status"] == "failed"
    assert transition.changes["error_message"] == "Stopped by user"
    assert transition.changes["completed_at"] == NOW


def test_cancel_of_completed_session_is_a_no_op():
    transition = cancel_transition(snapshot("completed"), "Stopped by user", NOW)
    assert not transition.applied
    assert transition.reason == REJECTED_TERMINAL

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import select

from conftest import join
from continuum_app import crud
from continuum_app.db import SessionLocal
from continuum_app.models import Participant, Vote


def _submit(client, token, participant_id, votes):
    return client.post(
        f"/api/public/invite/{token}/submit",
        json={"participantId": participant_id, "votes": votes},
    )


def _close(client, setup):
    r = client.put(
        f"/api/sessions/{setup['session']['id']}/status",
        json={"status": "closed"},
        headers=setup["headers"],
    )
    assert r.status_code == 200


def test_invite_details_show_visible_continuums(client, voting_setup):
    s = voting_setup
    r = client.get(f"/api/public/invite/{s['token']}")
    assert r.status_code == 200
    data = r.json()

    assert data["session"] == {"id": s["session"]["id"], "type": "baseline", "status": "open"}
    assert data["project"] == {"id": s["project"]["id"], "name": "Team culture", "minValue": -5, "maxValue": 5}
    assert data["inviteEmail"] == "guest@example.com"
    assert [c["title"] for c in data["continuums"]] == ["Risk", "Pace"]


def test_unknown_invite_token(client, voting_setup):
    assert client.get("/api/public/invite/not-a-token").status_code == 404
    r = client.post("/api/public/invite/not-a-token/join", json={"name": "Eve"})
    assert r.status_code == 404
    assert r.json() == {"error": "Invalid invite"}
    assert _submit(client, "not-a-token", "p", []).status_code == 404


def test_join_requires_name(client, voting_setup):
    r = client.post(f"/api/public/invite/{voting_setup['token']}/join", json={"name": "   "})
    assert r.status_code == 400
    assert r.json() == {"error": "name required"}


def test_join_creates_participant(client, voting_setup, db):
    pid = join(client, voting_setup["token"], name="Ada", email="ada@example.com")
    participant = db.get(Participant, pid)
    assert participant.session_id == voting_setup["session"]["id"]
    assert participant.email == "ada@example.com"


def test_closed_session_blocks_join_and_submit_but_not_lookup(client, voting_setup):
    s = voting_setup
    pid = join(client, s["token"])
    _close(client, s)

    lookup = client.get(f"/api/public/invite/{s['token']}")
    assert lookup.status_code == 200
    assert lookup.json()["session"]["status"] == "closed"

    r = client.post(f"/api/public/invite/{s['token']}/join", json={"name": "Late"})
    assert r.status_code == 403
    assert r.json() == {"error": "Session is closed"}

    r = _submit(client, s["token"], pid, [{"continuumId": s["continuum_ids"][0], "value": 1}])
    assert r.status_code == 403


@pytest.mark.parametrize(
    "submitted,stored",
    [
        (9, 5),
        (-12, -5),
        (3, 3),
        (2.5, 3),
        (-2.5, -2),
        ("4", 4),
        ("abc", -5),
        ("", 0),
        (True, 1),
        ({"x": 1}, -5),
        (10**400, 5),
        (-(10**400), -5),
    ],
)
def test_vote_values_are_clamped(client, voting_setup, db, submitted, stored):
    s = voting_setup
    pid = join(client, s["token"])
    r = _submit(client, s["token"], pid, [{"continuumId": s["continuum_ids"][0], "value": submitted}])
    assert r.status_code == 200
    assert r.json() == {"ok": True}

    assert db.execute(select(Vote.value)).scalars().all() == [stored]


def test_null_vote_clamps_to_min_not_zero(client, voting_setup, db):
    # Deliberately stricter than browser Number(null) == 0: a missing value is not a rating.
    s = voting_setup
    pid = join(client, s["token"])
    r = _submit(client, s["token"], pid, [{"continuumId": s["continuum_ids"][0], "value": None}])
    assert r.status_code == 200
    assert db.execute(select(Vote.value)).scalars().all() == [-5]


def test_huge_value_does_not_drop_the_batch(client, voting_setup, db):
    s = voting_setup
    risk, pace, _ = s["continuum_ids"]
    pid = join(client, s["token"])
    r = _submit(client, s["token"], pid, [{"continuumId": pace, "value": 2}, {"continuumId": risk, "value": 10**400}])
    assert r.status_code == 200

    stored = dict(db.execute(select(Vote.continuum_id, Vote.value)).all())
    assert stored == {pace: 2, risk: 5}


def test_concurrent_resubmission_keeps_one_row(client, voting_setup, db):
    s = voting_setup
    pid = join(client, s["token"])
    cid = s["continuum_ids"][0]

    def submit(i: int) -> tuple[int, int]:
        session = SessionLocal()
        try:
            return crud.submit_votes(session, s["token"], pid, [{"continuumId": cid, "value": i % 5}])
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(submit, range(8)))

    assert outcomes == [(1, 0)] * 8
    rows = db.execute(select(Vote).where(Vote.participant_id == pid)).scalars().all()
    assert len(rows) == 1
    assert rows[0].value in {0, 1, 2, 3, 4}


def test_resubmission_overwrites_existing_vote(client, voting_setup, db):
    s = voting_setup
    pid = join(client, s["token"])
    cid = s["continuum_ids"][0]

    _submit(client, s["token"], pid, [{"continuumId": cid, "value": 3}])
    _submit(client, s["token"], pid, [{"continuumId": cid, "value": -2}])

    rows = db.execute(select(Vote)).scalars().all()
    assert len(rows) == 1
    assert rows[0].value == -2
    assert (rows[0].session_id, rows[0].participant_id, rows[0].continuum_id) == (s["session"]["id"], pid, cid)


def test_unknown_continuums_are_skipped(client, voting_setup, auth_headers, db):
    s = voting_setup
    other = client.post("/api/projects", json={"name": "Elsewhere"}, headers=auth_headers).json()
    foreign = client.post(
        f"/api/projects/{other['id']}/continuums", json={"title": "Foreign"}, headers=auth_headers
    ).json()

    pid = join(client, s["token"])
    r = _submit(
        client,
        s["token"],
        pid,
        [
            {"continuumId": "bogus", "value": 1},
            {"continuumId": foreign["id"], "value": 1},
            "not-an-object",
            {"value": 2},
            {"continuumId": s["continuum_ids"][1], "value": 2},
        ],
    )
    assert r.status_code == 200
    assert db.execute(select(Vote.continuum_id)).scalars().all() == [s["continuum_ids"][1]]


@pytest.mark.parametrize(
    "body",
    [
        {"votes": []},
        {"participantId": "x"},
        {"participantId": "x", "votes": {"continuumId": "c"}},
    ],
)
def test_submit_rejects_malformed_payload(client, voting_setup, body):
    r = client.post(f"/api/public/invite/{voting_setup['token']}/submit", json=body)
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid payload"}


def test_submit_rejects_participant_from_another_session(client, voting_setup):
    s = voting_setup
    other_session = client.post(
        f"/api/projects/{s['project']['id']}/sessions", json={"type": "comparison"}, headers=s["headers"]
    ).json()
    other_invite = client.post(
        f"/api/sessions/{other_session['id']}/invite", json={"email": "b@example.com"}, headers=s["headers"]
    ).json()
    outsider = join(client, other_invite["inviteUrl"].split("token=")[1])

    r = _submit(client, s["token"], outsider, [{"continuumId": s["continuum_ids"][0], "value": 1}])
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid participant"}


def test_results_average_and_count(client, voting_setup):
    s = voting_setup
    risk, pace, hidden = s["continuum_ids"]
    for name, value in (("A", 2), ("B", 4), ("C", 5)):
        pid = join(client, s["token"], name=name)
        _submit(client, s["token"], pid, [{"continuumId": risk, "value": value}, {"continuumId": hidden, "value": 1}])

    r = client.get(f"/api/sessions/{s['session']['id']}/results", headers=s["headers"])
    assert r.status_code == 200
    data = r.json()
    assert data["sessionId"] == s["session"]["id"]

    by_id = {row["continuumId"]: row for row in data["results"]}
    assert set(by_id) == {risk, pace}
    assert by_id[risk]["count"] == 3
    assert by_id[risk]["avg"] == 3.7
    assert sorted(by_id[risk]["values"]) == [2, 4, 5]
    assert by_id[pace]["count"] == 0
    assert by_id[pace]["avg"] == 0


def test_results_unknown_session(client, auth_headers):
    assert client.get("/api/sessions/missing/results", headers=auth_headers).status_code == 404


def test_export_csv_escapes_fields(client, voting_setup):
    s = voting_setup
    client.put(f"/api/continuums/{s['continuum_ids'][0]}", json={"title": "Risk, appetite"}, headers=s["headers"])
    pid = join(client, s["token"], name='O"Brien', email="ob@example.com")
    _submit(client, s["token"], pid, [{"continuumId": s["continuum_ids"][0], "value": -3}])

    r = client.get(f"/api/sessions/{s['session']['id']}/export.csv", headers=s["headers"])
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert r.headers["content-disposition"] == 'attachment; filename="session.csv"'

    lines = r.text.strip().split("\n")
    assert lines[0] == "submitted_at,participant,email,continuum,value"
    assert len(lines) == 2
    assert lines[1].endswith(',"O""Brien",ob@example.com,"Risk, appetite",-3')

# ---------------------------------------------------------------------------
# crud.py
#
# Database CRUD operations and domain-level helpers.
#
# This module encapsulates the database access patterns used by the routes in
# main.py so handlers stay small:
# - Functions take an explicit SQLAlchemy Session.
# - Domain errors (400/403/404/409) are raised as HTTPException, the same way
#   the routes raise them.
# - Ownership is checked here: a project (and everything below it) is only
#   visible to the user who created it. Rows without an owner are shared.
# - Writes that would otherwise race (continuum sort order, vote upserts) are
#   single statements so the database serializes them.
# ---------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import delete, func, insert, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import bad_request, conflict, forbidden, not_found
from .models import (
    Continuum,
    Invite,
    Participant,
    Project,
    User,
    Vote,
    VotingSession,
    new_id,
    utcnow,
)
from .utils import average, clamp_vote, fmt_dt, new_key

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _can_access(project: Project | None, user: User) -> bool:
    return project is not None and (project.owner_id is None or project.owner_id == user.id)


def _bulk(stmt):
    return stmt.execution_options(synchronize_session=False)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(User.email == email.lower())).scalar_one_or_none()


def create_user(db: Session, email: str, password_hash: str) -> User:
    email = email.lower()
    if get_user_by_email(db, email):
        raise conflict("Email exists")

    user = User(email=email, password_hash=password_hash)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent registration for the same email.
        db.rollback()
        raise conflict("Email exists")
    return user


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def list_projects(db: Session, user: User) -> list[Project]:
    q = (
        select(Project)
        .where(or_(Project.owner_id == user.id, Project.owner_id.is_(None)))
        .order_by(Project.updated_at.desc(), Project.created_at.desc())
    )
    return list(db.execute(q).scalars().all())


def create_project(db: Session, owner: User, name: str, min_value: int, max_value: int) -> Project:
    name = (name or "").strip()
    if not name:
        raise bad_request("name required")
    if min_value > max_value:
        raise bad_request("minValue must not exceed maxValue")

    now = utcnow()
    p = Project(
        owner_id=owner.id,
        name=name,
        min_value=min_value,
        max_value=max_value,
        created_at=now,
        updated_at=now,
    )
    db.add(p)
    db.commit()
    return p


def get_project(db: Session, user: User, project_id: str) -> Project:
    p = db.get(Project, project_id)
    if not _can_access(p, user):
        raise not_found("Project not found")
    return p


def delete_project(db: Session, project: Project) -> None:
    """Delete a project and every row that depends on it, leaves first."""
    session_ids = select(VotingSession.id).where(VotingSession.project_id == project.id)
    continuum_ids = select(Continuum.id).where(Continuum.project_id == project.id)

    db.execute(
        _bulk(delete(Vote).where(or_(Vote.session_id.in_(session_ids), Vote.continuum_id.in_(continuum_ids))))
    )
    db.execute(_bulk(delete(Participant).where(Participant.session_id.in_(session_ids))))
    db.execute(_bulk(delete(Invite).where(Invite.session_id.in_(session_ids))))
    db.execute(_bulk(delete(VotingSession).where(VotingSession.project_id == project.id)))
    db.execute(_bulk(delete(Continuum).where(Continuum.project_id == project.id)))
    db.execute(_bulk(delete(Project).where(Project.id == project.id)))
    db.commit()


# ---------------------------------------------------------------------------
# Continuums
# ---------------------------------------------------------------------------


def list_continuums(db: Session, project_id: str, include_hidden: bool = True) -> list[Continuum]:
    q = select(Continuum).where(Continuum.project_id == project_id)
    if not include_hidden:
        q = q.where(Continuum.is_hidden == False)  # noqa: E712
    q = q.order_by(Continuum.sort_order.asc(), Continuum.created_at.asc())
    return list(db.execute(q).scalars().all())


def create_continuum(
    db: Session,
    project: Project,
    title: str,
    left_aim: str = "",
    right_aim: str = "",
    left_desc: str = "",
    right_desc: str = "",
) -> Continuum:
    title = (title or "").strip()
    if not title:
        raise bad_request("title required")

    # max(sort_order) + 1 is evaluated inside the INSERT itself.
    next_sort = (
        select(func.coalesce(func.max(Continuum.sort_order), 0) + 1)
        .where(Continuum.project_id == project.id)
        .correlate(None)
        .scalar_subquery()
    )
    now = utcnow()
    continuum_id = new_id()
    db.execute(
        insert(Continuum).values(
            id=continuum_id,
            project_id=project.id,
            title=title,
            left_aim=left_aim,
            right_aim=right_aim,
            left_desc=left_desc,
            right_desc=right_desc,
            sort_order=next_sort,
            is_hidden=False,
            created_at=now,
            updated_at=now,
        )
    )
    db.commit()
    return db.get(Continuum, continuum_id)


def get_continuum(db: Session, user: User, continuum_id: str) -> Continuum:
    c = db.get(Continuum, continuum_id)
    if not c or not _can_access(db.get(Project, c.project_id), user):
        raise not_found("Not found")
    return c


def update_continuum(db: Session, continuum: Continuum, changes: dict[str, Any]) -> Continuum:
    """Merge `changes` over the current row; None keeps the current value."""
    for field in ("title", "left_aim", "right_aim", "left_desc", "right_desc"):
        value = changes.get(field)
        if value is not None:
            setattr(continuum, field, value)

    is_hidden = changes.get("is_hidden")
    if isinstance(is_hidden, bool):
        continuum.is_hidden = is_hidden

    continuum.updated_at = utcnow()
    db.commit()
    db.refresh(continuum)
    return continuum


def delete_continuum(db: Session, continuum: Continuum) -> None:
    db.execute(_bulk(delete(Vote).where(Vote.continuum_id == continuum.id)))
    db.execute(_bulk(delete(Continuum).where(Continuum.id == continuum.id)))
    db.commit()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def list_sessions(db: Session, project_id: str) -> list[VotingSession]:
    q = (
        select(VotingSession)
        .where(VotingSession.project_id == project_id)
        .order_by(VotingSession.created_at.desc())
    )
    return list(db.execute(q).scalars().all())


def create_session(db: Session, project: Project, session_type: str) -> VotingSession:
    now = utcnow()
    s = VotingSession(project_id=project.id, type=session_type, status="open", created_at=now, updated_at=now)
    db.add(s)
    db.commit()
    return s


def get_session(db: Session, user: User, session_id: str) -> VotingSession:
    s = db.get(VotingSession, session_id)
    if not s or not _can_access(db.get(Project, s.project_id), user):
        raise not_found("Session not found")
    return s


def set_session_status(db: Session, session: VotingSession, status: str) -> VotingSession:
    session.status = status
    session.updated_at = utcnow()
    db.commit()
    db.refresh(session)
    return session


def list_participants(db: Session, session_id: str) -> list[Participant]:
    q = (
        select(Participant)
        .where(Participant.session_id == session_id)
        .order_by(Participant.joined_at.asc())
    )
    return list(db.execute(q).scalars().all())


# ---------------------------------------------------------------------------
# Invites and the public voting flow
# ---------------------------------------------------------------------------


def create_invite(db: Session, session: VotingSession, email: str) -> Invite:
    inv = Invite(session_id=session.id, email=email, token=new_key(18))
    db.add(inv)
    db.commit()
    return inv


def resolve_invite(db: Session, token: str) -> tuple[Invite, VotingSession, Project]:
    """Follow an invite token to its session and project (404 if any link is missing)."""
    inv = db.execute(select(Invite).where(Invite.token == token)).scalar_one_or_none()
    if not inv:
        raise not_found("Invalid invite")

    s = db.get(VotingSession, inv.session_id)
    if not s:
        raise not_found("Invalid session")

    p = db.get(Project, s.project_id)
    if not p:
        raise not_found("Invalid project")
    return inv, s, p


def join_session(db: Session, token: str, name: str | None, email: str | None) -> Participant:
    name = (name or "").strip()
    if not name:
        raise bad_request("name required")

    _, s, _ = resolve_invite(db, token)
    if not s.is_open:
        raise forbidden("Session is closed")

    participant = Participant(session_id=s.id, name=name, email=(email or "").strip() or None)
    db.add(participant)
    db.commit()
    return participant


def _vote_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        return None
    return dialect_insert


def upsert_vote(db: Session, session_id: str, participant_id: str, continuum_id: str, value: int) -> None:
    """Insert or overwrite the vote for (session, participant, continuum) in one statement."""
    now = utcnow()
    dialect_insert = _vote_insert(db)
    if dialect_insert is None:
        # No ON CONFLICT support: read-then-write.
        existing = db.execute(
            select(Vote).where(
                Vote.session_id == session_id,
                Vote.participant_id == participant_id,
                Vote.continuum_id == continuum_id,
            )
        ).scalar_one_or_none()
        if existing:
            existing.value = value
            existing.submitted_at = now
        else:
            db.add(
                Vote(
                    session_id=session_id,
                    participant_id=participant_id,
                    continuum_id=continuum_id,
                    value=value,
                    submitted_at=now,
                )
            )
        db.flush()
        return

    stmt = dialect_insert(Vote).values(
        id=new_id(),
        session_id=session_id,
        participant_id=participant_id,
        continuum_id=continuum_id,
        value=value,
        submitted_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["session_id", "participant_id", "continuum_id"],
        set_={"value": stmt.excluded.value, "submitted_at": stmt.excluded.submitted_at},
    )
    db.execute(stmt)


def submit_votes(db: Session, token: str, participant_id: Any, votes: Any) -> tuple[int, int]:
    """Record a participant's votes; return (accepted, skipped).

    Votes for continuums outside the session's project are skipped without
    error. Values are clamped into the project's scale.
    """
    if not participant_id or not isinstance(votes, list):
        raise bad_request("Invalid payload")

    _, s, p = resolve_invite(db, token)
    if not s.is_open:
        raise forbidden("Session is closed")

    participant = db.execute(
        select(Participant).where(Participant.id == str(participant_id), Participant.session_id == s.id)
    ).scalar_one_or_none()
    if not participant:
        raise bad_request("Invalid participant")

    project_continuums = set(
        db.execute(select(Continuum.id).where(Continuum.project_id == p.id)).scalars().all()
    )

    accepted = skipped = 0
    for vote in votes:
        continuum_id = vote.get("continuumId") if isinstance(vote, dict) else None
        if continuum_id is None or str(continuum_id) not in project_continuums:
            skipped += 1
            continue
        value = clamp_vote(vote.get("value"), p.min_value, p.max_value)
        upsert_vote(db, s.id, participant.id, str(continuum_id), value)
        accepted += 1

    db.commit()
    return accepted, skipped


# ---------------------------------------------------------------------------
# Aggregation & export
# ---------------------------------------------------------------------------


def session_results(db: Session, session: VotingSession) -> list[dict[str, Any]]:
    """Per visible continuum: all vote values, their count and rounded mean."""
    continuums = list_continuums(db, session.project_id, include_hidden=False)
    rows = db.execute(
        select(Vote.continuum_id, Vote.value)
        .where(Vote.session_id == session.id)
        .order_by(Vote.submitted_at.asc())
    ).all()

    by_continuum: dict[str, list[int]] = {}
    for continuum_id, value in rows:
        by_continuum.setdefault(continuum_id, []).append(value)

    results = []
    for c in continuums:
        values = by_continuum.get(c.id, [])
        results.append(
            {
                "continuumId": c.id,
                "title": c.title,
                "values": values,
                "count": len(values),
                "avg": average(values),
            }
        )
    return results


EXPORT_HEADER = ("submitted_at", "participant", "email", "continuum", "value")


def export_rows(db: Session, session_id: str) -> Iterable[tuple]:
    q = (
        select(Vote.submitted_at, Participant.name, Participant.email, Continuum.title, Vote.value)
        .join(Participant, Participant.id == Vote.participant_id)
        .join(Continuum, Continuum.id == Vote.continuum_id)
        .where(Vote.session_id == session_id)
        .order_by(Vote.submitted_at.asc())
    )
    for submitted_at, name, email, title, value in db.execute(q).all():
        yield fmt_dt(submitted_at), name, email, title, value

# ---------------------------------------------------------------------------
# cli.py
#
# Command-line client (`continuum ...`).
#
# Mirrors the browser pages: `login` / `register` store a bearer token in a
# token file, the admin commands manage projects, continuums and sessions,
# and `vote` walks the participant flow for an invite token. `init-db` and
# `serve` run the server side.
# ---------------------------------------------------------------------------

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional

import requests
import typer

from .client import ApiClient, ApiError

app = typer.Typer(help="Continuum voting client.", no_args_is_help=True)

DEFAULT_API = os.getenv("CONTINUUM_API", "http://localhost:8000")
DEFAULT_TOKEN_FILE = os.getenv("CONTINUUM_TOKEN_FILE", str(Path.home() / ".continuum_token"))


def make_session():
    return requests.Session()


class _State:
    def __init__(self, api: str, token_file: Path):
        self.api = api
        self.token_file = token_file

    def read_token(self) -> Optional[str]:
        if not self.token_file.exists():
            return None
        return self.token_file.read_text(encoding="utf-8").strip() or None

    def write_token(self, token: str) -> None:
        self.token_file.write_text(token, encoding="utf-8")

    def client(self, auth: bool = True) -> ApiClient:
        token = self.read_token() if auth else None
        if auth and not token:
            typer.echo("Not logged in. Run `continuum login` first.", err=True)
            raise typer.Exit(code=1)
        return ApiClient(self.api, token=token, session=make_session())


@app.callback()
def main(
    ctx: typer.Context,
    api: str = typer.Option(DEFAULT_API, "--api", help="API base URL."),
    token_file: Path = typer.Option(Path(DEFAULT_TOKEN_FILE), "--token-file", help="Where the login token is kept."),
):
    ctx.obj = _State(api, token_file)


def _out(data) -> None:
    typer.echo(json.dumps(data, indent=2))


def _call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except ApiError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Login page
# ---------------------------------------------------------------------------


@app.command()
def login(
    ctx: typer.Context,
    email: str = typer.Option(..., prompt=True),
    password: str = typer.Option(..., prompt=True, hide_input=True),
):
    """Log in and store the token."""
    client = ctx.obj.client(auth=False)
    ctx.obj.write_token(_call(client.login, email, password))
    typer.echo("Logged in.")


@app.command()
def register(
    ctx: typer.Context,
    email: str = typer.Option(..., prompt=True),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Create an account and store the token."""
    client = ctx.obj.client(auth=False)
    ctx.obj.write_token(_call(client.register, email, password))
    typer.echo("Registered.")


@app.command()
def logout(ctx: typer.Context):
    if ctx.obj.token_file.exists():
        ctx.obj.token_file.unlink()
    typer.echo("Logged out.")


# ---------------------------------------------------------------------------
# Admin console
# ---------------------------------------------------------------------------


@app.command()
def projects(ctx: typer.Context):
    """List projects."""
    for p in _call(ctx.obj.client().projects):
        typer.echo(f"{p['id']}  {p['name']} ({p['min_value']}..{p['max_value']})")


@app.command("create-project")
def create_project(
    ctx: typer.Context,
    name: str,
    min_value: int = typer.Option(-5, "--min"),
    max_value: int = typer.Option(5, "--max"),
):
    _out(_call(ctx.obj.client().create_project, name, min_value, max_value))


@app.command("delete-project")
def delete_project(ctx: typer.Context, project_id: str):
    _call(ctx.obj.client().delete_project, project_id)
    typer.echo("Deleted.")


@app.command()
def continuums(ctx: typer.Context, project_id: str):
    """List a project's continuums in voting order."""
    for c in _call(ctx.obj.client().continuums, project_id):
        hidden = " (hidden)" if c["is_hidden"] else ""
        typer.echo(f"{c['id']}  {c['title']}{hidden}  {c['left_aim'] or ''} <> {c['right_aim'] or ''}")


@app.command("add-continuum")
def add_continuum(
    ctx: typer.Context,
    project_id: str,
    title: str,
    left_aim: str = typer.Option("", "--left"),
    right_aim: str = typer.Option("", "--right"),
    left_desc: str = typer.Option("", "--left-desc"),
    right_desc: str = typer.Option("", "--right-desc"),
):
    client = ctx.obj.client()
    _out(_call(client.create_continuum, project_id, title, left_aim, right_aim, left_desc, right_desc))


@app.command("hide-continuum")
def hide_continuum(ctx: typer.Context, continuum_id: str):
    _out(_call(ctx.obj.client().set_continuum_hidden, continuum_id, True))


@app.command("show-continuum")
def show_continuum(ctx: typer.Context, continuum_id: str):
    _out(_call(ctx.obj.client().set_continuum_hidden, continuum_id, False))


@app.command("delete-continuum")
def delete_continuum(ctx: typer.Context, continuum_id: str):
    _call(ctx.obj.client().delete_continuum, continuum_id)
    typer.echo("Deleted.")


@app.command()
def sessions(ctx: typer.Context, project_id: str):
    for s in _call(ctx.obj.client().sessions, project_id):
        typer.echo(f"{s['id']}  {s['type']} ({s['status']})")


@app.command("create-session")
def create_session(ctx: typer.Context, project_id: str, session_type: str = typer.Argument("baseline")):
    _out(_call(ctx.obj.client().create_session, project_id, session_type))


@app.command("open-session")
def open_session(ctx: typer.Context, session_id: str):
    _out(_call(ctx.obj.client().set_session_status, session_id, "open"))


@app.command("close-session")
def close_session(ctx: typer.Context, session_id: str):
    _out(_call(ctx.obj.client().set_session_status, session_id, "closed"))


@app.command()
def invite(ctx: typer.Context, session_id: str, email: str):
    """Create an invite and print the participant link to send manually."""
    data = _call(ctx.obj.client().invite, session_id, email)
    typer.echo(data["inviteUrl"])


@app.command()
def participants(ctx: typer.Context, session_id: str):
    for p in _call(ctx.obj.client().participants, session_id):
        typer.echo(f"{p['name']}  {p['email'] or ''}")


@app.command()
def results(ctx: typer.Context, session_id: str):
    """Print the average per visible continuum."""
    data = _call(ctx.obj.client().results, session_id)
    for r in data["results"]:
        typer.echo(f"{r['title']}: avg {r['avg']} ({r['count']})")


@app.command("export-csv")
def export_csv(
    ctx: typer.Context,
    session_id: str,
    output: Optional[Path] = typer.Option(None, "--output", "-o"),
):
    text = _call(ctx.obj.client().export_csv, session_id)
    if output is None:
        typer.echo(text, nl=False)
    else:
        output.write_text(text, encoding="utf-8")
        typer.echo(f"Wrote {output}")


# ---------------------------------------------------------------------------
# Participant page
# ---------------------------------------------------------------------------


def _parse_values(pairs: List[str]) -> dict:
    votes = {}
    for pair in pairs:
        cid, sep, value = pair.partition("=")
        if not sep:
            raise typer.BadParameter(f"expected CONTINUUM_ID=VALUE, got {pair!r}")
        votes[cid.strip()] = value.strip()
    return votes


@app.command()
def vote(
    ctx: typer.Context,
    token: str,
    name: str = typer.Option(..., prompt=True),
    email: Optional[str] = typer.Option(None),
    value: List[str] = typer.Option([], "--value", help="CONTINUUM_ID=VALUE; prompts when omitted."),
):
    """Join a session through an invite token and submit votes."""
    client = ctx.obj.client(auth=False)
    details = _call(client.invite_details, token)
    project = details["project"]
    typer.echo(f"{project['name']} / {details['session']['type']}")

    votes = _parse_values(value)
    if not votes:
        scale = f"{project['minValue']}..{project['maxValue']}"
        for c in details["continuums"]:
            label = f"{c['title']} [{c['left_aim'] or ''} <> {c['right_aim'] or ''}] {scale}"
            votes[c["id"]] = typer.prompt(label, type=int)

    participant_id = _call(client.join, token, name, email)
    _call(client.submit, token, participant_id, votes)
    typer.echo("Submitted successfully.")


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db_command():
    """Create missing tables in DATABASE_URL."""
    from .db import init_db

    for name in init_db():
        typer.echo(name)


@app.command()
def serve(host: str = "127.0.0.1", port: int = 8000, reload: bool = False):
    import uvicorn

    uvicorn.run("continuum_app.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()

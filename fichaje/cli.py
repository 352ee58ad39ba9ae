"""Flask CLI commands.

- flask check-missing-clockouts [--dry-run]
  Email every employee still clocked in today. Prints the JSON result and
  exits non-zero when the run fails.
- flask create-user --email ana@example.com --name "Ana Pérez" [--admin]
  Create a user (prompts for the password).
"""

from __future__ import annotations

import json

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from fichaje.errors import StoreError
from fichaje.extensions import db
from fichaje.models import User, UserRole
from fichaje.security import hash_password, normalize_email


@click.command("check-missing-clockouts")
@click.option("--dry-run", is_flag=True, help="List pending users without sending emails.")
@with_appcontext
def check_missing_clockouts_command(dry_run: bool) -> None:
    from fichaje.dashboard import app_timezone
    from fichaje.missing_clockouts import ResendMailer, check_missing_clockouts
    from fichaje.store import EventStore

    config = current_app.config
    try:
        mailer = None
        if not dry_run:
            mailer = ResendMailer(
                config["RESEND_API_KEY"],
                config["MAIL_FROM"],
                config["MAIL_API_URL"],
                timeout=config["MAIL_TIMEOUT_SECONDS"],
            )
        result = check_missing_clockouts(EventStore(), mailer, app_timezone(config), config["APP_URL"])
    except (ValueError, StoreError) as exc:
        current_app.logger.error("check-missing-clockouts failed", exc_info=True)
        click.echo(json.dumps({"success": False, "error": str(exc)}, ensure_ascii=False))
        raise SystemExit(1) from exc

    click.echo(json.dumps(result, ensure_ascii=False, indent=2))


@click.command("create-user")
@click.option("--email", required=True)
@click.option("--name", "full_name", default="")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--admin", "is_admin", is_flag=True, help="Grant access to the admin routes.")
@with_appcontext
def create_user_command(email: str, full_name: str, password: str, is_admin: bool) -> None:
    normalized = normalize_email(email)
    if db.session.execute(select(User.id).where(User.email == normalized)).scalar_one_or_none() is not None:
        raise click.ClickException(f"User {normalized} already exists.")

    try:
        password_hash = hash_password(password)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    user = User(
        email=normalized,
        full_name=full_name.strip() or None,
        password_hash=password_hash,
        role=UserRole.ADMIN if is_admin else UserRole.USER,
    )
    try:
        db.session.add(user)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise click.ClickException("Could not create user.") from exc
    click.echo(f"Created {user.role.value.lower()} {normalized}")

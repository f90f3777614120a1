import click
from flask.cli import with_appcontext
from orgassess.extensions import db
from orgassess.models import Organization
from orgassess.models.user import User, ROLE_ROOT, ROLE_CHOICES
from orgassess.services import organizations as org_svc
from orgassess.services import users as user_svc
from orgassess.services.bulk_users import import_users
from orgassess.services.errors import ServiceError


def _service_call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except ServiceError as e:
        db.session.rollback()
        raise click.ClickException(e.message)


@click.group()
def bootstrap():
    """Bootstrap helpers."""


@bootstrap.command("root")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--first-name", default="Root")
@click.option("--last-name", default="Admin")
@with_appcontext
def bootstrap_root(email, password, first_name, last_name):
    # fail fast if user exists
    if user_svc.find_by_email(db.session, email) is not None:
        raise click.ClickException("User already exists")
    _service_call(user_svc.validate_password, password)

    user = User(
        email=email.strip().lower(),
        first_name=first_name,
        last_name=last_name,
        role=ROLE_ROOT,
        is_active=True,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    click.echo(f"Bootstrap complete: root_user_id={user.id} email={user.email}")


@click.group()
def orgs():
    """Organization management."""


@orgs.command("create")
@click.option("--name", required=True)
@click.option("--contact-email", default=None)
@click.option("--industry", default=None)
@with_appcontext
def orgs_create(name, contact_email, industry):
    data = {"name": name, "contact_email": contact_email, "industry": industry}
    org = _service_call(org_svc.create_organization, db.session, None, data)
    db.session.commit()
    click.echo(f"Organization created id={org.id} name={org.name}")


@click.group()
def users():
    """User management."""


@users.command("create")
@click.option("--email", required=True)
@click.option("--password", default=None, help="Omit to generate a temporary password")
@click.option("--org-id", type=int, required=True, help="Existing organization id")
@click.option("--role", type=click.Choice(ROLE_CHOICES), default="employee")
@click.option("--first-name", required=True)
@click.option("--last-name", required=True)
@with_appcontext
def users_create(email, password, org_id, role, first_name, last_name):
    data = {
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "role": role,
        "organization_id": org_id,
    }
    user, pw = _service_call(user_svc.create_user, db.session, None, data, password=password)
    db.session.commit()
    click.echo(f"User created id={user.id} email={user.email} org_id={org_id} role={role}")
    if password is None:
        click.echo(f"Temporary password: {pw}")


@users.command("import")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--org-id", type=int, required=True, help="Existing organization id")
@with_appcontext
def users_import(csv_path, org_id):
    if db.session.get(Organization, org_id) is None:
        raise click.ClickException(f"Organization id {org_id} not found")
    report = _service_call(import_users, db.session, None, csv_path, organization_id=org_id)
    db.session.commit()
    click.echo(f"created={report.created} skipped={report.skipped} failed={report.failed}")
    for err in report.errors:
        click.echo(f"  line {err['line']}: {err.get('email') or '-'}: {err['error']}", err=True)
    for user, pw in report.created_users:
        click.echo(f"  {user.email}\t{pw}")


@users.command("set-role")
@click.option("--email", required=True)
@click.option("--role", type=click.Choice(ROLE_CHOICES), required=True)
@with_appcontext
def users_set_role(email, role):
    user = user_svc.find_by_email(db.session, email)
    if user is None:
        raise click.ClickException("User not found")
    _service_call(user_svc.set_role, db.session, user, role)
    db.session.commit()
    click.echo(f"Set role of {user.email} to {role}")


def register_cli(app):
    app.cli.add_command(bootstrap)
    app.cli.add_command(orgs)
    app.cli.add_command(users)

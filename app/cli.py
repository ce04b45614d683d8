import click
from flask.cli import with_appcontext
from app.extensions import db
from app.billing.plans import DEFAULT_PLANS
from app.models import Account, PlanDefinition, ROLE_USER, ROLE_DEALER, ROLE_ADMIN
from app.services import credits, idempotency


@click.group()
def billing():
    """Billing / entitlement ops."""


@billing.command("prune-webhook-events")
@click.option("--days", type=int, default=None, help="Retention window (default WEBHOOK_EVENT_RETENTION_DAYS)")
@with_appcontext
def prune_webhook_events(days):
    deleted = idempotency.prune(days)
    click.echo(f"Pruned {deleted} processed webhook events")


@billing.command("seed-plans")
@click.option("--overwrite", is_flag=True, help="Replace existing rows with the built-in defaults")
@with_appcontext
def seed_plans(overwrite):
    created = updated = 0
    for plan in DEFAULT_PLANS.values():
        row = db.session.query(PlanDefinition).filter_by(name=plan.name).one_or_none()
        if row and not overwrite:
            continue
        if row is None:
            row = PlanDefinition(name=plan.name)
            db.session.add(row)
            created += 1
        else:
            updated += 1
        row.display_name = plan.display_name
        row.description = plan.description
        row.price = plan.price
        row.duration_days = plan.duration_days
        row.features = list(plan.features)
        row.max_listings = plan.max_listings
        row.boost_credits = plan.boost_credits
        row.allowed_roles = list(plan.allowed_roles)
        row.is_active = plan.is_active
        row.visible = plan.visible
        row.sort_order = plan.sort_order
    db.session.commit()
    click.echo(f"Plans seeded: created={created} updated={updated}")


@billing.command("grant-credits")
@click.option("--email", required=True)
@click.option("--amount", type=click.IntRange(min=1), required=True)
@click.option("--reason", default="manual")
@with_appcontext
def grant_credits(email, amount, reason):
    account = db.session.query(Account).filter_by(email=email.strip().lower()).one_or_none()
    if not account:
        raise click.ClickException(f"Account {email} not found")
    balance = credits.grant(account.id, amount, reason=reason)
    db.session.commit()
    click.echo(f"Granted {amount} credits to account id={account.id}; balance={balance}")


@click.group()
def accounts():
    """Account management."""


@accounts.command("create")
@click.option("--email", required=True)
@click.option("--role", type=click.Choice([ROLE_USER, ROLE_DEALER, ROLE_ADMIN]), default=ROLE_USER)
@click.option("--credits", "initial_credits", type=click.IntRange(min=0), default=0)
@with_appcontext
def accounts_create(email, role, initial_credits):
    email = email.strip().lower()
    # fail fast if account exists
    if db.session.query(Account).filter_by(email=email).count():
        raise click.ClickException("Account already exists")

    account = Account(email=email, role=role, is_active=True, boost_credits=initial_credits)
    db.session.add(account)
    db.session.commit()

    click.echo(f"Account created id={account.id} email={account.email} role={role} credits={initial_credits}")


def register_cli(app):
    app.cli.add_command(billing)
    app.cli.add_command(accounts)

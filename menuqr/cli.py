import json
import click
from flask.cli import with_appcontext
from menuqr.extensions import db
from menuqr.billing import EventLedger, SubscriptionReconciler, get_gateway
from menuqr.billing.lifecycle import snapshot_is_active
from menuqr.errors import BillingError
from menuqr.models import User
from menuqr.services.billing import latest_subscription

@click.group()
def billing():
    """Billing reconciliation ops."""

@billing.command("replay")
@click.option("--event-id", required=True, help="Stripe event id already in the ledger")
@with_appcontext
def billing_replay(event_id):
    """Re-run a recorded event through the reconciler."""
    row = EventLedger(db.session).get(event_id)
    if row is None:
        raise click.ClickException(f"Event {event_id} not found in ledger")
    try:
        outcome = SubscriptionReconciler(db.session, get_gateway()).handle(row.payload)
    except BillingError as e:
        raise click.ClickException(e.message)
    click.echo(json.dumps(outcome, default=str))

@billing.command("sync")
@click.option("--subscription-id", required=True)
@with_appcontext
def billing_sync(subscription_id):
    """Fetch a subscription from Stripe and reconcile snapshot + access flag."""
    try:
        outcome = SubscriptionReconciler(db.session, get_gateway()).sync_subscription(subscription_id)
    except BillingError as e:
        raise click.ClickException(e.message)
    click.echo(json.dumps(outcome, default=str))

@billing.command("status")
@click.option("--tenant-id", required=True)
@with_appcontext
def billing_status(tenant_id):
    """Print the stored snapshot and access flag for a tenant."""
    user = db.session.get(User, tenant_id)
    sub = latest_subscription(tenant_id)
    click.echo(json.dumps({
        "tenant_id": tenant_id,
        "account": user.subscription if user else None,
        "subscription_id": sub.stripe_subscription_id if sub else None,
        "status": sub.status if sub else None,
        "current_period_end": sub.current_period_end if sub else None,
        "cancel_at_period_end": sub.cancel_at_period_end if sub else None,
        "computed_active": snapshot_is_active(sub),
    }))

def register_cli(app):
    app.cli.add_command(billing)

# commands.py - `flask --app bookhaven <command>` maintenance commands
import click

from bookhaven.core import seed_if_empty
from bookhaven.outbox import drain
from bookhaven.sweeper import sweep_expired_sales


def register_commands(app):
    @app.cli.command("sweep-sales")
    def sweep_sales_command():
        """Clear expired book sales now."""
        click.echo(f"Cleared {sweep_expired_sales()} expired sale(s).")

    @app.cli.command("outbox-drain")
    @click.option("--limit", default=100, show_default=True, help="Maximum events to dispatch.")
    def outbox_drain_command(limit):
        """Retry pending email and notification deliveries."""
        click.echo(f"Dispatched {drain(limit)} event(s).")

    @app.cli.command("seed")
    def seed_command():
        """Seed sample books and the admin account if missing."""
        seed_if_empty()
        click.echo("Seed complete.")

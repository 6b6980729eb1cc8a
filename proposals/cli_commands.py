"""
Flask CLI commands.

Commands:
- flask init-db: Create the database tables
- flask seed-products: Load the starter catalog into an empty database
- flask import-prices FILE: Import a CSV price list
- flask expire-quotes: Sweep finalized quotes past their validity date
"""
import os
from decimal import Decimal

import click

from proposals.database import create_all, get_session
from proposals.models import Product
from proposals.services.price_import_service import read_price_csv, import_prices
from proposals.services.quote_service import expire_quotes

SEED_PRODUCTS = [
    ('VOD-EV-001', 'Enterprise Voice Standard', 'Standard enterprise voice solution with basic features',
     'Voice', '15.00', '12 months'),
    ('VOD-EV-002', 'Enterprise Voice Premium', 'Premium enterprise voice solution with advanced features',
     'Voice', '25.00', '24 months'),
    ('VOD-NW-001', 'Managed SD-WAN Basic', 'Basic SD-WAN connectivity with managed service',
     'Network', '250.00', '36 months'),
    ('VOD-NW-002', 'Managed SD-WAN Enterprise', 'Enterprise SD-WAN with full management and SLA',
     'Network', '500.00', '36 months'),
    ('VOD-SEC-001', 'Cloud Security Gateway', 'Cloud-based security gateway with threat protection',
     'Security', '8.50', '12 months'),
    ('VOD-IOT-001', 'IoT Connectivity Pack', 'IoT SIM and connectivity management platform',
     'IoT', '2.50', '24 months'),
    ('VOD-UC-001', 'Unified Communications Suite', 'Integrated voice, video, and messaging platform',
     'Collaboration', '35.00', '24 months'),
    ('VOD-DIA-001', 'Dedicated Internet Access 100Mbps', 'Dedicated internet access with 100Mbps symmetric bandwidth',
     'Network', '350.00', '36 months'),
]


def seed_products(session) -> int:
    """Insert the starter catalog when no product exists yet. Returns rows added."""
    if session.query(Product.id).first():
        return 0
    try:
        for sku, name, description, category, price, term in SEED_PRODUCTS:
            session.add(Product(
                sku=sku,
                name=name,
                description=description,
                category=category,
                unit_price=Decimal(price),
                currency='EUR',
                commitment_term=term,
                billing_frequency='Monthly',
                active=True,
            ))
        session.commit()
    except Exception:
        session.rollback()
        raise
    return len(SEED_PRODUCTS)


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('seed-products')
    def seed_products_command():
        """Load the starter catalog."""
        added = seed_products(get_session())
        if added:
            click.echo(click.style(f'{added} products added.', fg='green'))
        else:
            click.echo('Catalog already has products, nothing to seed.')

    @app.cli.command('import-prices')
    @click.argument('csv_file', type=click.File('rb'))
    @click.option('--user', default='cli', help='User recorded in the audit trail')
    def import_prices_command(csv_file, user):
        """Import a CSV price list."""
        name = os.path.basename(csv_file.name)
        result = import_prices(get_session(), read_price_csv(csv_file), name, user)

        click.echo(f'{name}: {result.total_rows} rows, {result.imported} imported, '
                   f'{result.updated} updated, {result.skipped} skipped')
        for error in result.errors:
            click.echo(click.style(f'  {error}', fg='yellow'))

    @app.cli.command('expire-quotes')
    def expire_quotes_command():
        """Move finalized quotes past their validity date to EXPIRED."""
        count = expire_quotes(get_session())
        click.echo(f'{count} quote(s) expired.')

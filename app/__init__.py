import click
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from config import config

db = SQLAlchemy()


def create_app(config_name='default'):
    """Application factory: creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # ── Logging ───────────────────────────────────────────────────
    from app.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)

    # One broker per app instance; torn down with the app
    from app.notifications.broker import NotificationBroker
    app.extensions['notification_broker'] = NotificationBroker(logger=app.logger)

    # ── Blueprints ────────────────────────────────────────────────
    from app.auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint, url_prefix='/auth')

    from app.inventory import inventory as inventory_blueprint
    app.register_blueprint(inventory_blueprint, url_prefix='/inventory')

    from app.customers import customers as customers_blueprint
    app.register_blueprint(customers_blueprint, url_prefix='/customers')

    from app.billing import billing as billing_blueprint
    app.register_blueprint(billing_blueprint, url_prefix='/billing')

    from app.settings import settings as settings_blueprint
    app.register_blueprint(settings_blueprint, url_prefix='/settings')

    from app.notifications import notifications as notifications_blueprint
    app.register_blueprint(notifications_blueprint, url_prefix='/notifications')

    # ── Error Handlers ────────────────────────────────────────────
    from app.errors import register_error_handlers
    register_error_handlers(app)

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    return app


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all tables, seed this year's invoice sequence and default settings."""
        from datetime import date
        from app.billing.models import InvoiceSequence
        from app.settings.models import SALE_UNDO_TIME_LIMIT, get_setting, set_setting

        db.create_all()
        click.echo('✅  Database tables created.')

        # Avoids an INSERT inside the first sale's transaction
        year = date.today().year
        if not db.session.get(InvoiceSequence, year):
            db.session.add(InvoiceSequence(year=year, last_seq=0))
            click.echo(f'✅  Invoice sequence seeded for {year} (starts at 0).')
        else:
            click.echo(f'ℹ️   Invoice sequence for {year} already exists.')

        if get_setting(SALE_UNDO_TIME_LIMIT) is None:
            set_setting(SALE_UNDO_TIME_LIMIT, app.config['SALE_UNDO_TIME_LIMIT_DEFAULT'],
                        'Minutes a cashier may undo their last sale (1-60)')
            click.echo('✅  Default sale undo time limit stored.')
        db.session.commit()

    @app.cli.command('show-sequences')
    def show_sequences():
        """Show current invoice sequence counters (diagnostic)."""
        from app.billing.models import InvoiceSequence
        from app.billing.invoice import INVOICE_PREFIX
        rows = InvoiceSequence.query.order_by(InvoiceSequence.year.desc()).all()
        if not rows:
            click.echo('No sequence rows found. Run flask init-db first.')
            return
        click.echo(f'{"Year":<8} {"Last Seq":<12} {"Next Invoice"}')
        click.echo('─' * 40)
        for row in rows:
            next_inv = f'{INVOICE_PREFIX}-{row.year}-{row.last_seq + 1:04d}'
            click.echo(f'{row.year:<8} {row.last_seq:<12} {next_inv}')

    def _create_user(name, username, password, role):
        from app.auth.models import User
        if User.query.filter_by(username=username).first():
            click.echo(f'⚠️  User "{username}" already exists.')
            return
        user = User(name=name, username=username, role=role)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f'✅  {role.value.title()} user "{username}" created successfully.')

    @app.cli.command('seed-admin')
    @click.option('--name',     prompt='Full name',  help='Admin full name')
    @click.option('--username', prompt='Username',   help='Admin username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Admin password')
    def seed_admin(name, username, password):
        """Create the initial admin user."""
        from app.auth.models import RoleEnum
        _create_user(name, username, password, RoleEnum.admin)

    @app.cli.command('seed-cashier')
    @click.option('--name',     prompt='Full name',  help='Cashier full name')
    @click.option('--username', prompt='Username',   help='Cashier username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Cashier password')
    def seed_cashier(name, username, password):
        """Create a cashier user."""
        from app.auth.models import RoleEnum
        _create_user(name, username, password, RoleEnum.cashier)

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate the database with demo users, products and batches."""
        import random
        from decimal import Decimal
        from datetime import date, timedelta
        from app.auth.models import User, RoleEnum
        from app.inventory.models import Product, StockBatch, InventoryLog

        click.echo("🌱 Seeding demo data...")
        db.create_all()

        for username, name, password, role in (
            ('admin',    'Admin User',    'demo123', RoleEnum.admin),
            ('cashier1', 'Sarah Cashier', '123',     RoleEnum.cashier),
            ('cashier2', 'John Cashier',  '123',     RoleEnum.cashier),
        ):
            if not User.query.filter_by(username=username).first():
                u = User(name=name, username=username, role=role)
                u.set_password(password)
                db.session.add(u)
        db.session.commit()
        click.echo("✅ Users created (admin/demo123, cashier1/123).")

        if Product.query.count() < 5:
            catalogue = [
                ('Wireless Mouse', 'Peripherals', 12), ('Keyboard', 'Peripherals', 12),
                ('Monitor 24"', 'Displays', 24), ('USB Cable', 'Accessories', 0),
                ('Laptop Stand', 'Accessories', 6), ('Headphones', 'Audio', 12),
            ]
            for name, category, warranty in catalogue:
                p = Product(name=name, category=category)
                db.session.add(p)
                db.session.flush()
                # Two lots per product, the older one slightly cheaper
                for age_days in (30, 5):
                    qty  = random.randint(5, 40)
                    cost = Decimal(random.randint(50, 4000))
                    b = StockBatch(
                        product_id=p.id,
                        intake_date=date.today() - timedelta(days=age_days),
                        unit_cost=cost,
                        unit_price=(cost * Decimal('1.25')).quantize(Decimal('0.01')),
                        warranty_months=warranty,
                        quantity=qty,
                        remaining_quantity=qty,
                    )
                    db.session.add(b)
                    db.session.flush()
                    db.session.add(InventoryLog(batch_id=b.id, old_stock=0, new_stock=qty,
                                                reason="Initial Demo Stock"))
            db.session.commit()
            click.echo("✅ Products and batches seeded.")

        click.echo("✅ Demo seed complete.")

"""Management script for database setup tasks"""

from dotenv import load_dotenv
from flask.cli import FlaskGroup

load_dotenv()

from storefront import create_app
from storefront.billing.plans import seed_plans
from storefront.extensions import db

app = create_app()
cli = FlaskGroup(create_app=lambda: app)


@cli.command("init-db")
def init_db():
    """Create all tables and seed the plan catalogue"""
    with app.app_context():
        db.create_all()
        seed_plans()
        print("✅ Database initialized successfully!")


if __name__ == "__main__":
    cli()

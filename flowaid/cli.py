from decimal import Decimal

import click
from flask.cli import with_appcontext

from flowaid.extensions import db


@click.command("seed-demo")
@click.option("--owner-email", default="owner@flowaid.local", show_default=True, help="Email of the demo school owner.")
@with_appcontext
def seed_demo(owner_email: str):
    """Create demo schools + products for local checkout testing (idempotent)."""
    # lazy import to prevent circular imports
    from flowaid.models import Product, School, User

    click.echo("🌱 Seeding demo schools...")

    owner = User.query.filter_by(email=owner_email).first()
    if owner is None:
        owner = User(id="00000000-0000-4000-8000-000000000001", email=owner_email, full_name="Demo School Owner")
        db.session.add(owner)

    demo_schools = [
        {
            "name": "Kibera Girls Secondary",
            "location": "Nairobi, Kenya",
            "students_count": 420,
            "products": [("Reusable Pad Kit", "12.50"), ("Menstrual Cup", "18.00")],
        },
        {
            "name": "Accra Community School",
            "location": "Accra, Ghana",
            "students_count": 310,
            "products": [("Hygiene Pack (3 months)", "25.00")],
        },
    ]

    for data in demo_schools:
        school = School.query.filter_by(name=data["name"]).first()
        if school:
            click.echo(f"🔁 Updating existing school: {school.name}")
            school.location = data["location"]
            school.students_count = data["students_count"]
        else:
            school = School(
                name=data["name"],
                location=data["location"],
                students_count=data["students_count"],
                status="approved",
                owner=owner,
            )
            db.session.add(school)
            db.session.flush()
            click.echo(f"✨ Created new school: {school.name}")

        for name, price in data["products"]:
            product = Product.query.filter_by(name=name, school_id=school.id).first()
            if product is None:
                db.session.add(Product(name=name, price=Decimal(price), stock=100, category="hygiene", school_id=school.id))
                click.echo(f"   → Added product {name} (${price})")

    db.session.commit()
    click.echo("✅ Demo data ready.")

import argparse
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from returnsdesk.core import security
from returnsdesk.db.base import Base
from returnsdesk.db.session import SessionLocal, engine
from returnsdesk.models.order import Order, OrderStatus
from returnsdesk.models.user import User, UserRole
from returnsdesk.services import returns as returns_service

DEMO_CUSTOMER_EMAIL = "customer@example.com"
DEMO_PASSWORD = "demo-password"


async def init_db() -> None:
    import returnsdesk.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Database schema created")


async def create_admin(*, email: str, password: str, name: str | None = None) -> None:
    email_norm = (email or "").strip().lower()
    if not email_norm or "@" not in email_norm:
        raise SystemExit("Invalid email")
    if len(password) < 6:
        print("WARNING: creating admin with a password shorter than 6 characters; change it immediately.")

    async with SessionLocal() as session:
        existing = (await session.execute(select(User).where(User.email == email_norm))).scalar_one_or_none()
        if existing:
            existing.role = UserRole.admin
            existing.hashed_password = security.hash_password(password)
            session.add(existing)
            await session.commit()
            print(f"Promoted existing user {email_norm} to admin")
            return
        session.add(
            User(
                email=email_norm,
                hashed_password=security.hash_password(password),
                name=name or "Admin",
                role=UserRole.admin,
            )
        )
        await session.commit()
    print(f"Created admin {email_norm}")


async def seed_demo() -> None:
    """Create a demo customer with delivered orders and a couple of return requests."""
    async with SessionLocal() as session:
        customer = (
            await session.execute(select(User).where(User.email == DEMO_CUSTOMER_EMAIL))
        ).scalar_one_or_none()
        if customer:
            print("Demo data already present")
            return
        customer = User(
            email=DEMO_CUSTOMER_EMAIL,
            hashed_password=security.hash_password(DEMO_PASSWORD),
            name="Demo Customer",
            role=UserRole.customer,
        )
        session.add(customer)
        await session.flush()

        now = datetime.now(timezone.utc)
        orders = []
        for idx, total in enumerate(("49.90", "120.00", "15.50"), start=1):
            order = Order(
                user_id=customer.id,
                status=OrderStatus.delivered,
                reference_code=f"DEMO-{idx:04d}",
                total_amount=Decimal(total),
                currency="USD",
                customer_email=customer.email,
                customer_name=customer.name,
                delivered_at=now - timedelta(days=idx),
            )
            session.add(order)
            orders.append(order)
        await session.commit()
        order_ids = [order.id for order in orders]

        await returns_service.submit_return_request(
            session,
            order_id=order_ids[0],
            actor=customer,
            reason="Arrived with a cracked lid",
            reason_category="damaged_item",
        )
        await returns_service.submit_return_request(
            session,
            order_id=order_ids[1],
            actor=customer,
            reason="Ordered the wrong size",
            reason_category="size_issue",
        )
    print(f"Seeded demo customer {DEMO_CUSTOMER_EMAIL} with {len(order_ids)} delivered orders")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Returns desk utilities")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init-db", help="Create all tables (local/dev; use Alembic elsewhere)")

    admin = subparsers.add_parser("create-admin", help="Create an admin account or promote an existing user")
    admin.add_argument("--email", required=True, help="Admin email")
    admin.add_argument("--password", required=True, help="Admin password")
    admin.add_argument("--name", help="Display name (optional)")

    subparsers.add_parser("seed-demo", help="Seed a demo customer, delivered orders and return requests")
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "init-db":
        asyncio.run(init_db())
        return True

    if args.command == "create-admin":
        asyncio.run(create_admin(email=args.email, password=args.password, name=args.name))
        return True

    if args.command == "seed-demo":
        asyncio.run(seed_demo())
        return True

    return False


def main():
    parser = _build_parser()
    args = parser.parse_args()
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()

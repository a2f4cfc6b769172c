from sqlalchemy import func, select

from .models import SubscriptionPlan


DEFAULT_PLANS = [
    {
        "name": "Starter",
        "plan_key": "starter",
        "price": 29.0,
        "price_label": "$29/mo",
        "branches": 1,
        "staff": 3,
        "features": ["Online booking", "Staff app", "Booking reminders"],
        "color": "blue",
        "trial_days": 14,
    },
    {
        "name": "Pro",
        "plan_key": "pro",
        "price": 79.0,
        "price_label": "$79/mo",
        "branches": 3,
        "staff": 15,
        "features": ["Everything in Starter", "Multi-branch", "Multi-service bookings", "Audit log"],
        "color": "purple",
        "popular": True,
        "trial_days": 14,
    },
    {
        "name": "Enterprise",
        "plan_key": "enterprise",
        "price": 199.0,
        "price_label": "$199/mo",
        "branches": 25,
        "staff": 200,
        "features": ["Everything in Pro", "Priority support"],
        "color": "gold",
    },
]


async def seed_default_plans(session) -> int:
    """Insert the default plans into an empty plans table. Returns the number added."""
    result = await session.execute(select(func.count()).select_from(SubscriptionPlan))
    if result.scalar_one():
        return 0

    session.add_all([SubscriptionPlan(**plan) for plan in DEFAULT_PLANS])
    await session.commit()
    return len(DEFAULT_PLANS)

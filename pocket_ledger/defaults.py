"""
Starter data for a fresh ledger.

Seeding only happens when the ledger has no wallets (or no categories) at
all, archived ones included, so running it twice is harmless.
"""

from decimal import Decimal

from pocket_ledger.models.ledger import CategoryType


DEFAULT_WALLETS = [
    {"name": "Efectivo", "emoji": "💵", "color": "#22c55e", "opening_balance": Decimal("150000")},
    {"name": "Bancolombia", "emoji": "🏦", "color": "#3b82f6", "opening_balance": Decimal("2500000")},
    {"name": "Nequi", "emoji": "💜", "color": "#8b5cf6", "opening_balance": Decimal("80000")},
    {"name": "Tarjeta Crédito", "emoji": "💳", "color": "#f43f5e", "opening_balance": Decimal("-350000")},
]

DEFAULT_CATEGORIES = [
    {"name": "Comida y Mercado", "emoji": "🛒", "color": "#22c55e", "type": CategoryType.EXPENSE, "budget_limit": Decimal("500000")},
    {"name": "Transporte", "emoji": "🚌", "color": "#3b82f6", "type": CategoryType.EXPENSE, "budget_limit": Decimal("150000")},
    {"name": "Entretenimiento", "emoji": "🎮", "color": "#8b5cf6", "type": CategoryType.EXPENSE, "budget_limit": Decimal("200000")},
    {"name": "Salud", "emoji": "❤️‍🩹", "color": "#f43f5e", "type": CategoryType.EXPENSE},
    {"name": "Educación", "emoji": "📚", "color": "#06b6d4", "type": CategoryType.EXPENSE},
    {"name": "Ropa y Estilo", "emoji": "👕", "color": "#ec4899", "type": CategoryType.EXPENSE, "budget_limit": Decimal("300000")},
    {"name": "Casa y Hogar", "emoji": "🏠", "color": "#f97316", "type": CategoryType.EXPENSE},
    {"name": "Trabajo / Freelance", "emoji": "💼", "color": "#eab308", "type": CategoryType.INCOME},
    {"name": "Salario", "emoji": "💰", "color": "#14b8a6", "type": CategoryType.INCOME},
    {"name": "Servicios", "emoji": "💡", "color": "#6366f1", "type": CategoryType.EXPENSE, "budget_limit": Decimal("200000")},
    {"name": "Suscripciones", "emoji": "📱", "color": "#a855f7", "type": CategoryType.EXPENSE, "budget_limit": Decimal("100000")},
    {"name": "Mascotas", "emoji": "🐾", "color": "#fb923c", "type": CategoryType.EXPENSE},
]


async def seed_defaults(service) -> dict[str, int]:
    """
    Create the starter wallets and categories on an empty ledger.

    Args:
        service: An open LedgerService

    Returns:
        How many wallets and categories were created
    """
    created = {"wallets": 0, "categories": 0}

    async with service.storage.transaction():
        if not await service.list_wallets(include_archived=True):
            for fields in DEFAULT_WALLETS:
                await service.create_wallet(dict(fields))
            created["wallets"] = len(DEFAULT_WALLETS)

        if not await service.list_categories(include_archived=True):
            for fields in DEFAULT_CATEGORIES:
                await service.create_category(dict(fields))
            created["categories"] = len(DEFAULT_CATEGORIES)

    return created

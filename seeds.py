from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Category, CategoryGroup, ProviderCategoryMapping

# group -> [(category, is_discretionary)]
DEFAULT_TAXONOMY: dict[str, list[tuple[str, bool]]] = {
    "Income": [("Income", False)],
    "Housing": [
        ("Rent", False),
        ("Mortgage", False),
        ("Utilities", False),
        ("Home Improvement", False),
    ],
    "Food": [("Groceries", False), ("Restaurants", False), ("Coffee", False)],
    "Transportation": [
        ("Gas", False),
        ("Public Transit", False),
        ("Rideshare", False),
        ("Parking & Tolls", False),
        ("Car Payment", False),
    ],
    "Shopping": [
        ("Shopping", True),
        ("Online Marketplaces", True),
        ("Superstores", True),
    ],
    "Entertainment": [
        ("Other Entertainment", True),
        ("Events & Amusement", True),
        ("Video Games", True),
        ("TV & Movies", True),
        ("Music & Audio", True),
    ],
    "Health": [("Medical", False), ("Pharmacy", False), ("Fitness", False)],
    "Financial": [
        ("Loan Payments", False),
        ("Bank Fees", False),
        ("Insurance", False),
        ("Taxes", False),
    ],
    "Other": [("Other", False)],
}

PLAID_CATEGORY_MAPPING: dict[str, str] = {
    "INCOME_DIVIDENDS": "Income",
    "INCOME_INTEREST_EARNED": "Income",
    "INCOME_RETIREMENT_PENSION": "Income",
    "INCOME_TAX_REFUND": "Income",
    "INCOME_UNEMPLOYMENT": "Income",
    "INCOME_WAGES": "Income",
    "INCOME_OTHER_INCOME": "Income",
    "RENT_AND_UTILITIES_RENT": "Rent",
    "RENT_AND_UTILITIES_GAS_AND_ELECTRICITY": "Utilities",
    "RENT_AND_UTILITIES_INTERNET_AND_CABLE": "Utilities",
    "RENT_AND_UTILITIES_TELEPHONE": "Utilities",
    "RENT_AND_UTILITIES_WATER": "Utilities",
    "RENT_AND_UTILITIES_SEWAGE_AND_WASTE_MANAGEMENT": "Utilities",
    "RENT_AND_UTILITIES_OTHER_UTILITIES": "Utilities",
    "LOAN_PAYMENTS_MORTGAGE_PAYMENT": "Mortgage",
    "LOAN_PAYMENTS_CAR_PAYMENT": "Car Payment",
    "LOAN_PAYMENTS_CREDIT_CARD_PAYMENT": "Loan Payments",
    "LOAN_PAYMENTS_STUDENT_LOAN_PAYMENT": "Loan Payments",
    "LOAN_PAYMENTS_PERSONAL_LOAN_PAYMENT": "Loan Payments",
    "LOAN_PAYMENTS_OTHER_PAYMENT": "Loan Payments",
    "HOME_IMPROVEMENT_FURNITURE": "Home Improvement",
    "HOME_IMPROVEMENT_HARDWARE": "Home Improvement",
    "HOME_IMPROVEMENT_REPAIR_AND_MAINTENANCE": "Home Improvement",
    "FOOD_AND_DRINK_GROCERIES": "Groceries",
    "FOOD_AND_DRINK_RESTAURANT": "Restaurants",
    "FOOD_AND_DRINK_FAST_FOOD": "Restaurants",
    "FOOD_AND_DRINK_BEER_WINE_AND_LIQUOR": "Restaurants",
    "FOOD_AND_DRINK_OTHER_FOOD_AND_DRINK": "Restaurants",
    "FOOD_AND_DRINK_COFFEE": "Coffee",
    "TRANSPORTATION_GAS": "Gas",
    "TRANSPORTATION_PUBLIC_TRANSIT": "Public Transit",
    "TRANSPORTATION_TAXIS_AND_RIDE_SHARES": "Rideshare",
    "TRANSPORTATION_PARKING": "Parking & Tolls",
    "TRANSPORTATION_TOLLS": "Parking & Tolls",
    "GENERAL_MERCHANDISE_ONLINE_MARKETPLACES": "Online Marketplaces",
    "GENERAL_MERCHANDISE_SUPERSTORES": "Superstores",
    "GENERAL_MERCHANDISE_CLOTHING_AND_ACCESSORIES": "Shopping",
    "GENERAL_MERCHANDISE_DEPARTMENT_STORES": "Shopping",
    "GENERAL_MERCHANDISE_ELECTRONICS": "Shopping",
    "GENERAL_MERCHANDISE_SPORTING_GOODS": "Shopping",
    "GENERAL_MERCHANDISE_OTHER_GENERAL_MERCHANDISE": "Shopping",
    "ENTERTAINMENT_CASINOS_AND_GAMBLING": "Other Entertainment",
    "ENTERTAINMENT_OTHER_ENTERTAINMENT": "Other Entertainment",
    "ENTERTAINMENT_MUSIC_AND_AUDIO": "Music & Audio",
    "ENTERTAINMENT_SPORTING_EVENTS_AMUSEMENT_PARKS_AND_MUSEUMS": "Events & Amusement",
    "ENTERTAINMENT_TV_AND_MOVIES": "TV & Movies",
    "ENTERTAINMENT_VIDEO_GAMES": "Video Games",
    "MEDICAL_PRIMARY_CARE": "Medical",
    "MEDICAL_DENTAL_CARE": "Medical",
    "MEDICAL_EYE_CARE": "Medical",
    "MEDICAL_VETERINARY_SERVICES": "Medical",
    "MEDICAL_OTHER_MEDICAL": "Medical",
    "MEDICAL_PHARMACIES_AND_SUPPLEMENTS": "Pharmacy",
    "PERSONAL_CARE_GYMS_AND_FITNESS_CENTERS": "Fitness",
    "BANK_FEES_ATM_FEES": "Bank Fees",
    "BANK_FEES_OVERDRAFT_FEES": "Bank Fees",
    "BANK_FEES_OTHER_BANK_FEES": "Bank Fees",
    "GENERAL_SERVICES_INSURANCE": "Insurance",
    "GOVERNMENT_AND_NON_PROFIT_TAX_PAYMENT": "Taxes",
    "OTHER_OTHER": "Other",
}


def seed_taxonomy(session: Session, budget_id: int) -> int:
    """Create the default groups and categories missing from a budget."""
    created = 0
    for group_name, categories in DEFAULT_TAXONOMY.items():
        group = session.scalar(
            select(CategoryGroup).where(
                CategoryGroup.budget_id == budget_id,
                CategoryGroup.name == group_name,
            )
        )
        if group is None:
            group = CategoryGroup(budget_id=budget_id, name=group_name)
            session.add(group)
            session.flush()
        for name, is_discretionary in categories:
            exists = session.scalar(
                select(Category.id).where(
                    Category.budget_id == budget_id, Category.name == name
                )
            )
            if exists:
                continue
            session.add(
                Category(
                    budget_id=budget_id,
                    group_id=group.id,
                    name=name,
                    is_discretionary=is_discretionary,
                )
            )
            created += 1
    session.flush()
    return created


def seed_provider_mappings(session: Session) -> int:
    existing = set(session.scalars(select(ProviderCategoryMapping.provider_category)))
    created = 0
    for provider_category, category_name in PLAID_CATEGORY_MAPPING.items():
        if provider_category in existing:
            continue
        session.add(
            ProviderCategoryMapping(
                provider_category=provider_category, category_name=category_name
            )
        )
        created += 1
    session.flush()
    return created


def seed_defaults(session: Session, budget_id: int) -> None:
    seed_taxonomy(session, budget_id)
    seed_provider_mappings(session)

from household_categorizer.models import UNCATEGORIZED, CategoryGroup

DEFAULT_GROUPS: dict[str, CategoryGroup] = {
    "Salary": CategoryGroup.INCOME,
    "Investment Income": CategoryGroup.INCOME,
    "Account Transfer": CategoryGroup.TRANSFER,
    "Transfers": CategoryGroup.TRANSFER,
    "Transfer": CategoryGroup.TRANSFER,
    "Transportation": CategoryGroup.EXPENSE,
    "Food & Dining": CategoryGroup.EXPENSE,
    "Housing": CategoryGroup.EXPENSE,
    "Healthcare": CategoryGroup.EXPENSE,
    "Entertainment": CategoryGroup.EXPENSE,
    "Shopping": CategoryGroup.EXPENSE,
    "Cash Withdrawal": CategoryGroup.EXPENSE,
    "Government & Tax": CategoryGroup.EXPENSE,
    "Supermarket": CategoryGroup.EXPENSE,
    "Transport": CategoryGroup.EXPENSE,
    UNCATEGORIZED: CategoryGroup.OTHER,
}

_GROUP_ALIASES = {
    "income": CategoryGroup.INCOME,
    "expense": CategoryGroup.EXPENSE,
    "expenses": CategoryGroup.EXPENSE,
    "transfer": CategoryGroup.TRANSFER,
    "transfers": CategoryGroup.TRANSFER,
    "other": CategoryGroup.OTHER,
}


def normalize_group(name: str | None) -> CategoryGroup:
    if not name:
        return CategoryGroup.EXPENSE
    return _GROUP_ALIASES.get(name.strip().lower(), CategoryGroup.OTHER)


class CategoryGroupHelper:
    def __init__(self, system_categories: dict[str, str] | None = None):
        self.system_categories = system_categories or {}

    def get_group_name(self, category: str) -> CategoryGroup:
        if category in self.system_categories:
            return normalize_group(self.system_categories[category])
        return DEFAULT_GROUPS.get(category, CategoryGroup.EXPENSE)

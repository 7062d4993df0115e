from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

OTHER_CATEGORY_KEY = "other"


@dataclass(frozen=True)
class CategoryDefinition:
    key: str
    display_name: str
    member_table_names: frozenset[str]
    priority: int


OTHER_CATEGORY = CategoryDefinition(
    key=OTHER_CATEGORY_KEY,
    display_name="Other",
    member_table_names=frozenset(),
    priority=0,
)


class CategoryRegistry:
    """Immutable table -> category lookup. Unknown tables resolve to ``other``."""

    def __init__(self, categories: Iterable[CategoryDefinition]):
        ordered = tuple(categories)
        by_table: dict[str, CategoryDefinition] = {}
        keys: set[str] = set()
        for category in ordered:
            if category.key in keys or category.key == OTHER_CATEGORY_KEY:
                raise ValueError(f"Duplicate or reserved category key '{category.key}'")
            keys.add(category.key)
            for table_name in category.member_table_names:
                if table_name in by_table:
                    raise ValueError(
                        f"Table '{table_name}' mapped to both '{by_table[table_name].key}' and '{category.key}'"
                    )
                by_table[table_name] = category
        self._categories = ordered
        self._by_table = by_table

    @property
    def categories(self) -> tuple[CategoryDefinition, ...]:
        """Declared categories in registry order, without the implicit ``other``."""
        return self._categories

    def resolve(self, table_name: str) -> CategoryDefinition:
        return self._by_table.get(table_name, OTHER_CATEGORY)

    def get(self, key: str) -> CategoryDefinition | None:
        if key == OTHER_CATEGORY_KEY:
            return OTHER_CATEGORY
        return next((c for c in self._categories if c.key == key), None)

    def keys(self) -> list[str]:
        return [c.key for c in self._categories] + [OTHER_CATEGORY_KEY]


def _category(key: str, name: str, tables: list[str], priority: int) -> CategoryDefinition:
    return CategoryDefinition(key=key, display_name=name, member_table_names=frozenset(tables), priority=priority)


DEFAULT_CATEGORIES: tuple[CategoryDefinition, ...] = (
    _category("data_pipeline", "Data Pipeline", ["sync_log", "data_quality_checks"], 100),
    _category("core_data", "Core Data", ["asin_performance_data", "search_query_performance"], 90),
    _category("brand_management", "Brand Management", ["brands", "asin_brand_mapping", "product_type_mapping"], 70),
    _category("reporting", "Reporting", ["report_configurations", "report_execution_history"], 50),
    _category(
        "deprecated",
        "Deprecated",
        ["weekly_summary", "monthly_summary", "quarterly_summary", "yearly_summary"],
        10,
    ),
)


def default_registry() -> CategoryRegistry:
    return CategoryRegistry(DEFAULT_CATEGORIES)

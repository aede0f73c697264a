"""Navigation payload models.

Upstream discovery strategies hand back navigation in several shapes. Each
shape has its own variant type and conversion function, so hierarchy
building only ever sees ``NavigationRepresentation.items``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError


class NavItem(BaseModel):
    """A single named navigation entry. Unknown fields are kept as-is."""

    model_config = ConfigDict(extra="allow")

    name: str
    url: str | None = None


class SectionList(BaseModel):
    """``{"main_sections": [{"name": ...}, ...]}``"""

    kind: Literal["sections"] = "sections"
    sections: list[NavItem]

    @property
    def items(self) -> list[NavItem]:
        return list(self.sections)


class DropdownMenuMap(BaseModel):
    """``{"dropdown_menus": {"Women": {"items": [...]}, ...}}``"""

    kind: Literal["dropdown_menus"] = "dropdown_menus"
    menus: dict[str, list[NavItem]]

    @property
    def items(self) -> list[NavItem]:
        return [item for menu_items in self.menus.values() for item in menu_items]


class BareItems(BaseModel):
    """A plain JSON array of navigation entries."""

    kind: Literal["items"] = "items"
    entries: list[NavItem]

    @property
    def items(self) -> list[NavItem]:
        return list(self.entries)


class DepartmentIndex(BaseModel):
    """``{"categories": {"departments": [...]}}``: departments by declaration."""

    kind: Literal["departments"] = "departments"
    departments: list[NavItem]

    @property
    def items(self) -> list[NavItem]:
        return list(self.departments)


NavigationRepresentation = SectionList | DropdownMenuMap | BareItems | DepartmentIndex


def _coerce_items(raw: Any) -> list[NavItem]:
    """Turn a raw list into NavItems.

    Entries without a usable name, or whose known fields have the wrong type,
    are skipped.
    """
    if not isinstance(raw, list):
        return []
    items: list[NavItem] = []
    for entry in raw:
        if isinstance(entry, str) and entry.strip():
            items.append(NavItem(name=entry))
        elif isinstance(entry, dict) and isinstance(entry.get("name"), str) and entry["name"]:
            try:
                items.append(NavItem.model_validate(entry))
            except ValidationError:
                continue
    return items


def _from_sections(raw: dict[str, Any]) -> SectionList:
    return SectionList(sections=_coerce_items(raw.get("main_sections")))


def _from_dropdown_menus(raw: dict[str, Any]) -> DropdownMenuMap:
    menus: dict[str, list[NavItem]] = {}
    for name, menu in (raw.get("dropdown_menus") or {}).items():
        if isinstance(menu, dict):
            menus[str(name)] = _coerce_items(menu.get("items"))
        else:
            menus[str(name)] = _coerce_items(menu)
    return DropdownMenuMap(menus=menus)


def _from_bare_array(raw: list[Any]) -> BareItems:
    return BareItems(entries=_coerce_items(raw))


def _from_department_index(raw: dict[str, Any]) -> DepartmentIndex:
    return DepartmentIndex(departments=_coerce_items(raw["categories"].get("departments")))


def parse_navigation(raw: Any) -> NavigationRepresentation | None:
    """Classify a raw navigation payload into one of the known variants.

    Returns None for shapes none of the variants recognise.
    """
    if isinstance(raw, list):
        return _from_bare_array(raw)
    if not isinstance(raw, dict):
        return None
    if "main_sections" in raw:
        return _from_sections(raw)
    if isinstance(raw.get("categories"), dict) and "departments" in raw["categories"]:
        return _from_department_index(raw)
    if isinstance(raw.get("dropdown_menus"), dict):
        return _from_dropdown_menus(raw)
    return None


def count_items(raw: Any) -> int:
    representation = parse_navigation(raw)
    return len(representation.items) if representation is not None else 0


class NavigationNode(BaseModel):
    """One cached level of a site's navigation (``nav:{domain}:{level}``)."""

    domain: str
    level: str  # "main", "women", "women:tops"
    item_count: int = 0
    navigation: Any
    cached_at: datetime


class NavigationHierarchy(BaseModel):
    """Every known navigation level for a domain, keyed by level path."""

    domain: str
    levels: dict[str, NavigationNode] = {}
    discovered_at: datetime

    @property
    def is_complete(self) -> bool:
        return "main" in self.levels


class NavigationLookup(BaseModel):
    """Result of a cache-or-discover call for one level."""

    node: NavigationNode
    from_cache: bool
    cache_age_days: float | None = None

    @property
    def value(self) -> Any:
        return self.node.navigation


class LevelStats(BaseModel):
    hits: int = 0
    misses: int = 0


class NavigationCacheStats(BaseModel):
    domains: list[str] = []
    total_hits: int = 0
    total_misses: int = 0
    hit_rate: float = 0.0
    level_stats: dict[str, LevelStats] = {}


@dataclass(frozen=True)
class LevelContext:
    """What a discovery callable is asked to discover.

    ``item`` is the navigation entry (department or subcategory) the level was
    derived from; it is None for the ``main`` level.
    """

    domain: str
    level: str
    parent_level: str | None = None
    item: NavItem | None = None

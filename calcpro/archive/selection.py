"""
Archive Selection

Which periods a receipt export covers. Each axis (years, month keys)
holds one of three states:

- SelectNone: nothing on this axis
- SelectAll: every key currently available
- SelectSet: an explicit set of keys

The two axes are mutually exclusive: selecting anything on one axis
clears the other. Selections are immutable; every transition returns a
new ArchiveSelection.
"""

from collections.abc import Iterable
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class SelectNone(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["none"] = "none"


class SelectAll(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["all"] = "all"


class SelectSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["set"] = "set"
    keys: frozenset[str]


Selection = Annotated[
    Union[SelectNone, SelectAll, SelectSet],
    Field(discriminator="kind"),
]


def select_keys(keys: Iterable[str]) -> Union[SelectNone, SelectSet]:
    """SelectSet of the given keys, or SelectNone when there are none."""
    frozen = frozenset(keys)
    return SelectSet(keys=frozen) if frozen else SelectNone()


def resolve_selection(selection: Selection, available: Iterable[str]) -> set[str]:
    """Concrete keys a selection stands for, given the available keys."""
    if isinstance(selection, SelectAll):
        return set(available)
    if isinstance(selection, SelectSet):
        return set(selection.keys)
    return set()


def _toggle(selection: Selection, key: str, available: Iterable[str]) -> Union[SelectNone, SelectSet]:
    keys = resolve_selection(selection, available)
    keys.symmetric_difference_update({key})
    return select_keys(keys)


def _toggle_all(selection: Selection, available: Iterable[str]) -> Union[SelectNone, SelectAll]:
    available = set(available)
    if available and resolve_selection(selection, available) >= available:
        return SelectNone()
    return SelectAll()


class ArchiveSelection(BaseModel):
    """
    The user's export selection over years and month keys ("YYYY-MM").

    Transition rules:
    - toggling a single key adds or removes it; a non-empty result
      clears the other axis
    - "select all" selects every available key and clears the other
      axis, or clears its own axis when everything is already selected
    """
    model_config = ConfigDict(frozen=True)

    years: Selection = Field(default_factory=SelectNone)
    months: Selection = Field(default_factory=SelectNone)

    @property
    def is_empty(self) -> bool:
        return isinstance(self.years, SelectNone) and isinstance(self.months, SelectNone)

    def _with_years(self, years: Selection) -> 'ArchiveSelection':
        months = self.months if isinstance(years, SelectNone) else SelectNone()
        return ArchiveSelection(years=years, months=months)

    def _with_months(self, months: Selection) -> 'ArchiveSelection':
        years = self.years if isinstance(months, SelectNone) else SelectNone()
        return ArchiveSelection(years=years, months=months)

    def toggle_year(self, year: str, available: Iterable[str] = ()) -> 'ArchiveSelection':
        return self._with_years(_toggle(self.years, year, available))

    def toggle_month(self, month_key: str, available: Iterable[str] = ()) -> 'ArchiveSelection':
        return self._with_months(_toggle(self.months, month_key, available))

    def toggle_all_years(self, available: Iterable[str]) -> 'ArchiveSelection':
        return self._with_years(_toggle_all(self.years, available))

    def toggle_all_months(self, available: Iterable[str]) -> 'ArchiveSelection':
        return self._with_months(_toggle_all(self.months, available))

    def set_years(self, years: Iterable[str]) -> 'ArchiveSelection':
        return self._with_years(select_keys(years))

    def set_months(self, month_keys: Iterable[str]) -> 'ArchiveSelection':
        return self._with_months(select_keys(month_keys))

    def resolve_years(self, available: Iterable[str]) -> set[str]:
        return resolve_selection(self.years, available)

    def resolve_months(self, available: Iterable[str]) -> set[str]:
        return resolve_selection(self.months, available)

    def clear(self) -> 'ArchiveSelection':
        return ArchiveSelection()

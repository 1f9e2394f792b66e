"""Page size defaults for ticket listings."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_VIEW_PAGE_SIZE = 10
DEFAULT_REPOSITORY_PAGE_SIZE = 25


@dataclass(frozen=True, slots=True)
class ListingConfig:
    view_page_size: int = DEFAULT_VIEW_PAGE_SIZE
    repository_page_size: int = DEFAULT_REPOSITORY_PAGE_SIZE


def get_listing_config() -> ListingConfig:
    return ListingConfig()

"""SharingConfig — tunables for the sharing subsystem."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SharingConfig:
    """Configuration passed to :class:`~vaultshare.VaultShareAsync`.

    Attributes:
        sharing_enabled: When False every mutating call fails
            ``SHARING_DISABLED``; reads keep working.
        max_active_shares_per_container: Upper bound on PENDING/ACCEPTED
            shares per container.
        bulk_concurrency: Items of one bulk call processed at a time.
        max_bulk_size: Largest accepted bulk batch.
        default_page_size: Audit query page size when none is given.
        max_page_size: Hard cap on audit query page size.
        default_search_limit: Recipient search results when none is given.
        search_suggestion_limit: Suggestions returned by recipient validation.
    """

    sharing_enabled: bool = True
    max_active_shares_per_container: int = 100
    bulk_concurrency: int = 4
    max_bulk_size: int = 200
    default_page_size: int = 50
    max_page_size: int = 1000
    default_search_limit: int = 5
    search_suggestion_limit: int = 3

    def __post_init__(self) -> None:
        for name in (
            "max_active_shares_per_container",
            "bulk_concurrency",
            "max_bulk_size",
            "default_page_size",
            "max_page_size",
            "default_search_limit",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.search_suggestion_limit < 0:
            raise ValueError("search_suggestion_limit must be >= 0")
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")

from dataclasses import dataclass
from typing import Any, Iterable, Optional

import scimmap.config
from scimmap.data.constants import LIST_RESPONSE_SCHEMA


@dataclass(frozen=True)
class Window:
    """
    Page of results. `start_index` is 1-based, as in SCIM list responses.
    """

    start_index: int
    items_per_page: int
    total_results: int

    @property
    def offset(self) -> int:
        """
        0-based offset passed to the backend.
        """
        return self.start_index - 1

    @property
    def limit(self) -> int:
        return self.items_per_page


def compute_window(
    start_index: Optional[int] = None,
    count: Optional[int] = None,
    total_results: int = 0,
    default_count: Optional[int] = None,
    max_count: Optional[int] = None,
    config: Optional[scimmap.config.ServiceProviderConfig] = None,
) -> Window:
    """
    Computes the page of results. Start index below 1 is clamped to 1, absent count
    defaults to `default_count`, negative count is clamped to 0, and count above
    `max_count` is clamped to `max_count`. Defaults and maximum come from the
    configuration, unless provided explicitly.

    Examples:
        >>> window = compute_window(start_index=2, count=2, total_results=3)
        >>> window
        Window(start_index=2, items_per_page=2, total_results=3)
        >>> window.offset
        1
    """
    config = config or scimmap.config.service_provider_config
    if default_count is None:
        default_count = config.pagination.default_count
    if max_count is None:
        max_count = config.pagination.max_count

    if start_index is None or start_index < 1:
        start_index = 1
    if count is None:
        count = default_count
    count = min(max(count, 0), max_count)
    return Window(start_index=start_index, items_per_page=count, total_results=total_results)


def list_response(resources: Iterable[dict[str, Any]], window: Window) -> dict[str, Any]:
    """
    Builds `ListResponse` body for the provided (already serialized) resources.
    """
    return {
        "schemas": [LIST_RESPONSE_SCHEMA],
        "totalResults": window.total_results,
        "startIndex": window.start_index,
        "itemsPerPage": window.items_per_page,
        "Resources": list(resources),
    }

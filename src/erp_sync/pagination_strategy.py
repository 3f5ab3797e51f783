"""
PaginationStrategy module for OData-style $top/$skip offset pagination
"""

from dataclasses import dataclass
from typing import Dict


@dataclass
class PaginationCursor:
    """
    Zero-based offset cursor advancing by one batch per non-empty page

    Used by endpoints that accept ``$top`` (page size) and ``$skip`` (offset).
    """
    batch_size: int
    offset: int = 0
    top_param: str = '$top'
    skip_param: str = '$skip'

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {self.batch_size}")

    def query_params(self) -> Dict[str, int]:
        """Return the paging parameters for the current page"""
        return {
            self.top_param: self.batch_size,
            self.skip_param: self.offset
        }

    def advance(self) -> None:
        """Move to the next page"""
        self.offset += self.batch_size

    def build_url(self, endpoint_url: str, criteria: str = "") -> str:
        """
        Build the request URL for the current page

        The filter criteria string is appended verbatim after the paging
        parameters, so it is expected to start with ``&`` when present.

        Args:
            endpoint_url: Absolute endpoint URL without a query string
            criteria: Substituted filter string, may be empty

        Returns:
            URL of the form ``endpoint?$top=N&$skip=M`` plus the criteria
        """
        query = "&".join(f"{name}={value}" for name, value in self.query_params().items())
        url = f"{endpoint_url}?{query}"
        if criteria:
            url += criteria
        return url

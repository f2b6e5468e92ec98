"""Discovery request/response schemas."""

from pydantic import Field

from panelhub.schemas.common import CamelModel


class DiscoveryRequest(CamelModel):
    """Sweep ``base_ip.start`` .. ``base_ip.end``."""
    base_ip: str
    start: int = 1
    end: int = 254
    thorough: bool = False


class DiscoverySummary(CamelModel):
    base_ip: str
    start: int
    end: int
    total_checked: int
    panels_found: int
    not_panels: int
    no_response: int
    errors: int


class DiscoveryResponse(CamelModel):
    summary: DiscoverySummary
    results: list[dict] = Field(default_factory=list)

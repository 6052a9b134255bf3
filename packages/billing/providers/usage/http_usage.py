"""HTTP usage provider backed by the resource-owning service."""

from typing import Optional
import httpx

from common.core.config import settings
from common.core.exceptions import UsageUnavailableError
from common.core.telemetry import trace_span, get_logger
from packages.billing.models.domain.usage import UsageCounters
from packages.billing.providers.usage.interface import UsageProviderInterface

logger = get_logger(__name__)


class HttpUsageProvider(UsageProviderInterface):
    """Reads counters from ``GET {base_url}/usage/{user_id}``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.usage_service_base_url).rstrip("/")
        self.timeout = timeout or settings.usage_service_timeout_seconds
        self.transport = transport

    @trace_span
    async def get_counters(
        self, user_id: str, bearer_token: Optional[str] = None
    ) -> UsageCounters:
        headers = {"Accept": "application/json"}
        if bearer_token:
            headers["Authorization"] = f"Bearer {bearer_token}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(
                    f"{self.base_url}/usage/{user_id}", headers=headers
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Usage service returned {e.response.status_code}",
                extra={"user_id": user_id, "status_code": e.response.status_code},
            )
            raise UsageUnavailableError(
                f"Usage service returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                f"Usage service unreachable: {str(e)}",
                extra={"user_id": user_id, "error": str(e)},
            )
            raise UsageUnavailableError("Usage service unreachable") from e

        return UsageCounters(
            current_projects=data.get("current_projects", 0),
            current_uploads_this_period=data.get("current_uploads_this_period", 0),
            current_seats=data.get("current_seats", 1),
        )

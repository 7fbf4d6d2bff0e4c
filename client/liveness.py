from __future__ import annotations
from typing import Optional

import httpx

from shared.log import get_logger
from .config import ClientConfig
from .state import ChatContext, LivenessStatus

logger = get_logger(__name__)


class LivenessProbe:
    """One-shot GET /healthz. Advisory only; never gates connecting."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        context: Optional[ChatContext] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self._http = http_client
        self.context = context
        self.status = LivenessStatus.PENDING

    async def check(self) -> LivenessStatus:
        if self.status is not LivenessStatus.PENDING:
            return self.status
        try:
            if self._http is not None:
                response = await self._http.get(self.config.health_url)
            else:
                async with httpx.AsyncClient(timeout=self.config.request_timeout) as client:
                    response = await client.get(self.config.health_url)
        except httpx.HTTPError as e:
            logger.warning("Backend health check failed: %s", e)
            return self._settle(LivenessStatus.ERROR)

        if not response.is_success:
            logger.warning("Backend health check returned HTTP %s", response.status_code)
            return self._settle(LivenessStatus.ERROR)
        return self._settle(LivenessStatus.OK)

    def _settle(self, status: LivenessStatus) -> LivenessStatus:
        self.status = status
        if self.context is not None:
            self.context.liveness = status
        return status

from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

from datastore.repository import build_default_repository
from models.domain import Gateway
from models.errors import ErrorKind, Failure, Outcome
from services.base import GraphService
from settings import get_settings

logger = logging.getLogger(__name__)


class GatewayService(GraphService):
    """Gateway creation and gateway-centric graph reads."""

    def create_gateway(self, name: Optional[str]) -> Outcome[int]:
        # Only a missing name is rejected; an empty string is accepted as a name.
        if name is None:
            return Failure.invalid("Gateway name must be provided.")

        def work() -> int:
            gateway = self.repository.save_gateway(Gateway(name=name))
            assert gateway.id is not None
            return gateway.id

        outcome = self._atomic("create_gateway", work)
        if not isinstance(outcome, Failure):
            logger.info("Created gateway %r", name, extra={"gateway_id": outcome})
        return outcome

    def list_all_gateways(self) -> Outcome[List[Gateway]]:
        return self._atomic("list_all_gateways", self.repository.find_all_gateways)

    def find_gateway(self, gateway_id: int) -> Outcome[Gateway]:
        def work() -> Outcome[Gateway]:
            gateway = self.repository.find_gateway(gateway_id)
            if gateway is None:
                return Failure(ErrorKind.gateway_not_found, f"Gateway not found with ID: {gateway_id}")
            return gateway

        return self._atomic("find_gateway", work, gateway_id=gateway_id)

    def list_gateways_with_sensor_type(self, type_name: str) -> Outcome[List[Gateway]]:
        return self._atomic(
            "list_gateways_with_sensor_type",
            lambda: self.repository.find_gateways_with_sensor_type(type_name),
            sensor_type=type_name,
        )


@lru_cache
def build_default_gateway_service() -> GatewayService:
    settings = get_settings()
    return GatewayService(build_default_repository(), conflict_retries=settings.conflict_retries)

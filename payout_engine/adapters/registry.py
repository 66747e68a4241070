"""
Payout Engine - Payment Gateway Registry.

Selects the gateway for a payout by the policy's payment_provider,
falling back to the registered default.
"""

import logging
from typing import Dict, List, Optional

from core.exceptions import ConfigurationError
from payout_engine.adapters.base import PaymentGatewayPort


logger = logging.getLogger(__name__)


class PaymentGatewayRegistry:
    """Registry of payment gateways keyed by provider id."""

    DEFAULT_KEY = "default"

    def __init__(self) -> None:
        self._gateways: Dict[str, PaymentGatewayPort] = {}
        self._default: Optional[str] = None

    def register(self, gateway: PaymentGatewayPort, default: bool = False) -> None:
        provider_id = gateway.provider_id
        if provider_id in self._gateways:
            raise ValueError(f"Payment gateway {provider_id} already registered")
        self._gateways[provider_id] = gateway
        if default or self._default is None:
            self._default = provider_id
        logger.info(f"Registered payment gateway: {provider_id}{' (default)' if self._default == provider_id else ''}")

    def get(self, provider_id: Optional[str] = None) -> PaymentGatewayPort:
        """
        Gateway for a provider id.

        Raises:
            ConfigurationError: If no gateway matches and no default exists
        """
        if provider_id and provider_id != self.DEFAULT_KEY and provider_id in self._gateways:
            return self._gateways[provider_id]
        if self._default is None:
            raise ConfigurationError(
                f"No payment gateway for provider {provider_id!r}",
                config_key="payment_provider",
                actual_value=provider_id,
            )
        if provider_id and provider_id != self.DEFAULT_KEY:
            logger.debug(f"No gateway {provider_id}; using default {self._default}")
        return self._gateways[self._default]

    def list_providers(self) -> List[str]:
        return list(self._gateways)

    @property
    def default_provider(self) -> Optional[str]:
        return self._default

    async def close_all(self) -> None:
        for gateway in self._gateways.values():
            await gateway.close()

    def __len__(self) -> int:
        return len(self._gateways)

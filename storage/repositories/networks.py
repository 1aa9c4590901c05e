"""
Network Repository.

Registered networks. A network row is written when the scan
scheduler starts; only its endpoint list changes afterwards.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from chain_adapters.base import mask_url
from core.config import NetworkConfig
from storage.models.chain import NetworkRecord
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import ValidationError


class NetworkRepository(BaseRepository[NetworkRecord]):
    """Repository for registered networks."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, NetworkRecord, "NetworkRepository")

    def get_network(self, network_id: str) -> Optional[NetworkRecord]:
        return self._get(network_id)

    def list_networks(self) -> List[NetworkRecord]:
        return self._execute_query(
            select(NetworkRecord).order_by(NetworkRecord.network_id),
            "list_networks",
        )

    def sync(self, config: NetworkConfig) -> NetworkRecord:
        """
        Register a network or refresh its endpoints.

        The chain model of a registered network cannot change:
        its committed rows were derived under that model.
        """
        endpoints = [mask_url(url) for url in config.rpc_endpoints]
        record = self._get(config.network_id)

        if record is None:
            record = NetworkRecord(
                network_id=config.network_id,
                name=config.name,
                chain_model=config.chain_model.value,
                native_asset=config.native_asset,
                rpc_endpoints=endpoints,
                confirmation_depth=config.confirmation_depth,
                max_reorg_depth=config.max_reorg_depth,
            )
            self._add(record)
            self._logger.info(f"[{config.network_id}] Registered network ({config.chain_model.value})")
            return record

        if record.chain_model != config.chain_model.value:
            raise ValidationError(
                self._repository_name,
                "sync",
                "chain_model",
                f"network {config.network_id} is registered as {record.chain_model}",
            )

        record.name = config.name
        record.rpc_endpoints = endpoints
        record.confirmation_depth = config.confirmation_depth
        record.max_reorg_depth = config.max_reorg_depth
        self._session.flush()
        return record

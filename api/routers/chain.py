"""
Chain data endpoints: networks, tips, transactions, balances, links.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.dependencies import get_scheduler, get_warehouse, require_api_key
from api.schemas import (
    BalanceResponse,
    LinkResponse,
    NetworkResponse,
    ReorgEventResponse,
    TipResponse,
    TransactionResponse,
)
from storage.warehouse import Warehouse

router = APIRouter(prefix="/v1", tags=["Chain Data"], dependencies=[Depends(require_api_key)])


# =============================================================
# NETWORKS
# =============================================================

@router.get("/networks", response_model=List[NetworkResponse])
def list_networks(
    warehouse: Warehouse = Depends(get_warehouse),
    scheduler=Depends(get_scheduler),
):
    networks = warehouse.list_networks()
    if scheduler is not None:
        for entry in networks:
            scanner = scheduler.get_scanner(entry["id"])
            if scanner is not None:
                entry["scan_state"] = scanner.state.state.value
    return networks


@router.get("/networks/{network_id}/tip", response_model=TipResponse)
def get_tip(network_id: str, warehouse: Warehouse = Depends(get_warehouse)):
    tip = warehouse.get_tip(network_id)
    if tip is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No committed blocks for network {network_id}",
        )
    return tip.to_dict()


@router.get("/networks/{network_id}/reorgs", response_model=List[ReorgEventResponse])
def list_reorgs(
    network_id: str,
    limit: int = Query(100, ge=1, le=1000),
    warehouse: Warehouse = Depends(get_warehouse),
):
    return warehouse.get_reorg_events(network_id, limit)


@router.get("/networks/{network_id}/skipped")
def list_skipped(
    network_id: str,
    limit: int = Query(100, ge=1, le=1000),
    warehouse: Warehouse = Depends(get_warehouse),
):
    return warehouse.get_skipped(network_id, limit)


# =============================================================
# TRANSACTIONS & ADDRESSES
# =============================================================

@router.get("/transactions/{tx_hash}", response_model=TransactionResponse)
def get_transaction(
    tx_hash: str,
    network_id: Optional[str] = Query(None, description="Restrict lookup to one network"),
    warehouse: Warehouse = Depends(get_warehouse),
):
    tx = warehouse.get_transaction(tx_hash, network_id)
    if tx is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Transaction {tx_hash} not found")
    return tx.to_dict()


@router.get("/addresses/{network_id}/{address}/balance", response_model=BalanceResponse)
def get_balance(
    network_id: str,
    address: str,
    height: Optional[int] = Query(None, ge=0),
    asset: Optional[str] = Query(None),
    warehouse: Warehouse = Depends(get_warehouse),
):
    return warehouse.balance_at(network_id, address, height=height, asset=asset).to_dict()


@router.get("/addresses/{network_id}/{address}/links", response_model=List[LinkResponse])
def get_links(
    network_id: str,
    address: str,
    direction: str = Query("outgoing", pattern="^(outgoing|incoming)$"),
    since: Optional[int] = Query(None),
    until: Optional[int] = Query(None),
    warehouse: Warehouse = Depends(get_warehouse),
):
    if direction == "outgoing":
        links = warehouse.get_links_from(network_id, address, since, until)
    else:
        links = warehouse.get_links_to(network_id, address, since, until)
    return [link.to_dict() for link in links]

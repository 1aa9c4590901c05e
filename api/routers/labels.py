"""
Label endpoints: label CRUD and address label assignment.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from api.dependencies import get_warehouse, require_api_key
from api.schemas import (
    AddressDelete,
    AddressDeleteResponse,
    LabelAssign,
    LabelCreate,
    LabeledAddressResponse,
    LabelResponse,
    LabelUpdate,
)
from storage.warehouse import Warehouse

router = APIRouter(prefix="/v1", tags=["Labels"], dependencies=[Depends(require_api_key)])


# =============================================================
# LABELS
# =============================================================

@router.get("/labels", response_model=List[LabelResponse])
def list_labels(
    limit: int = Query(1000, ge=1, le=10000),
    offset: int = Query(0, ge=0),
    warehouse: Warehouse = Depends(get_warehouse),
):
    return [label.to_dict() for label in warehouse.list_labels(limit, offset)]


@router.post("/labels", response_model=LabelResponse, status_code=status.HTTP_201_CREATED)
def create_label(body: LabelCreate, warehouse: Warehouse = Depends(get_warehouse)):
    return warehouse.create_label(body.name, body.description, body.is_locked).to_dict()


@router.get("/labels/{label_id}", response_model=LabelResponse)
def get_label(label_id: str, warehouse: Warehouse = Depends(get_warehouse)):
    return warehouse.get_label(label_id).to_dict()


@router.patch("/labels/{label_id}", response_model=LabelResponse)
def update_label(label_id: str, body: LabelUpdate, warehouse: Warehouse = Depends(get_warehouse)):
    return warehouse.update_label(
        label_id,
        name=body.name,
        description=body.description,
        is_locked=body.is_locked,
    ).to_dict()


@router.delete("/labels/{label_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_label(label_id: str, warehouse: Warehouse = Depends(get_warehouse)):
    warehouse.delete_label(label_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/labels/{label_id}/addresses", response_model=List[str])
def label_addresses(
    label_id: str,
    network_id: Optional[str] = Query(None),
    warehouse: Warehouse = Depends(get_warehouse),
):
    return warehouse.addresses_with_label(label_id, network_id)


# =============================================================
# ADDRESS LABELS
# =============================================================

@router.put("/addresses/{network_id}/{address}/label", response_model=LabeledAddressResponse)
def assign_label(
    network_id: str,
    address: str,
    body: LabelAssign,
    warehouse: Warehouse = Depends(get_warehouse),
):
    return warehouse.assign_label(network_id, address, body.label_id).to_dict()


@router.delete("/addresses/{network_id}/{address}/label", status_code=status.HTTP_204_NO_CONTENT)
def unassign_label(network_id: str, address: str, warehouse: Warehouse = Depends(get_warehouse)):
    warehouse.unassign_label(network_id, address)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/addresses/{network_id}/delete", response_model=AddressDeleteResponse)
def delete_addresses(
    network_id: str,
    body: AddressDelete,
    warehouse: Warehouse = Depends(get_warehouse),
):
    return {"deleted": warehouse.delete_addresses(network_id, body.addresses)}

"""
Marketplace — Admin API (catalog management and order oversight)
"""
from fastapi import APIRouter, Depends, Query, status

from marketplace.api.deps import get_catalog_service, get_reconciliation_service, require_admin
from marketplace.models import OrderStatus
from marketplace.schemas.catalog import CatalogItemCreate, CatalogItemList, CatalogItemOut, CatalogItemResponse, CatalogItemUpdate
from marketplace.schemas.order import (
    AdminOrderPage, ExpireRequest, OrderStatusResponse, OrderStatusUpdate, SweepResult, UndeliveredReport,
)
from marketplace.services.catalog_service import CatalogService
from marketplace.services.reconciliation_service import ReconciliationService

router = APIRouter(prefix="/admin/marketplace", tags=["admin"], dependencies=[Depends(require_admin)])


# ── Catalog ───────────────────────────────────────────────────────────────────

@router.get("/items", response_model=CatalogItemList)
async def list_all_items(
    category: str | None = None,
    item_status: str | None = Query(None, alias="status", pattern="^(active|inactive)$"),
    catalog: CatalogService = Depends(get_catalog_service),
):
    items = await catalog.list_all(category=category, status=item_status)
    return CatalogItemList(items=[CatalogItemOut.model_validate(item) for item in items])


@router.post("/items", response_model=CatalogItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(payload: CatalogItemCreate, catalog: CatalogService = Depends(get_catalog_service)):
    return CatalogItemResponse(item=CatalogItemOut.model_validate(await catalog.create(payload)))


@router.patch("/items/{item_id}", response_model=CatalogItemResponse)
async def update_item(
    item_id: int, payload: CatalogItemUpdate, catalog: CatalogService = Depends(get_catalog_service)
):
    return CatalogItemResponse(item=CatalogItemOut.model_validate(await catalog.update(item_id, payload)))


@router.delete("/items/{item_id}")
async def delete_item(item_id: int, catalog: CatalogService = Depends(get_catalog_service)):
    deleted = await catalog.delete(item_id)
    message = "Item deleted" if deleted else "Item has existing orders and was deactivated"
    return {"success": True, "deleted": deleted, "message": message}


@router.patch("/items/{item_id}/toggle", response_model=CatalogItemResponse)
async def toggle_item(item_id: int, catalog: CatalogService = Depends(get_catalog_service)):
    return CatalogItemResponse(item=CatalogItemOut.model_validate(await catalog.toggle(item_id)))


# ── Orders ────────────────────────────────────────────────────────────────────

@router.get("/orders", response_model=AdminOrderPage)
async def list_orders(
    order_status: OrderStatus | None = Query(None, alias="status"),
    search: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return await catalog.list_orders(status=order_status, search=search, page=page, limit=limit)


@router.get("/orders/undelivered", response_model=UndeliveredReport)
async def undelivered_orders(reconciliation: ReconciliationService = Depends(get_reconciliation_service)):
    """Approved orders and boss-points purchases still missing their depot delivery."""
    return UndeliveredReport(entries=await reconciliation.undelivered_report())


@router.patch("/orders/{order_id}/status", response_model=OrderStatusResponse)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
):
    order = await reconciliation.set_order_status(order_id, payload.status)
    return OrderStatusResponse(order_id=order.id, status=order.status)


@router.post("/orders/{order_id}/redeliver", response_model=OrderStatusResponse)
async def redeliver_order(
    order_id: int, reconciliation: ReconciliationService = Depends(get_reconciliation_service)
):
    order = await reconciliation.redeliver_order(order_id)
    return OrderStatusResponse(order_id=order.id, status=order.status)


@router.post("/orders/expire", response_model=SweepResult)
async def expire_pending_orders(
    payload: ExpireRequest, reconciliation: ReconciliationService = Depends(get_reconciliation_service)
):
    return await reconciliation.expire_stale_orders(payload.older_than_minutes)


# ── Stats ─────────────────────────────────────────────────────────────────────

@router.get("/stats")
async def marketplace_stats(catalog: CatalogService = Depends(get_catalog_service)):
    return {"success": True, **await catalog.stats()}

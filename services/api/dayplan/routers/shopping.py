from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..deps import get_current_user
from ..errors import InvalidInputError
from ..schemas import (
    ItemAssignmentOut,
    OptimizedShoppingListOut,
    OptimizeRequest,
    ShoppingItemOut,
    StoreOut,
    StoreRecommendationOut,
    to_wall_clock,
)
from ..services.shopping_optimizer import OptimizedShoppingList, ShoppingItem, optimize
from ..services.store_catalog import DEFAULT_STORES, list_stores
from ..services.travel import Location, TravelLookup, get_travel_lookup

router = APIRouter()


def _item_out(item: ShoppingItem) -> ShoppingItemOut:
    return ShoppingItemOut(
        name=item.name,
        quantity=item.quantity,
        unit=item.unit,
        priority=item.priority,
        category=item.category,
    )


def shopping_response(result: OptimizedShoppingList) -> OptimizedShoppingListOut:
    return OptimizedShoppingListOut(
        strategy=result.strategy,
        basis=result.basis,
        items=[_item_out(i) for i in result.items],
        stores=[
            StoreRecommendationOut(
                store=StoreOut(**rec.store.to_dict()),
                items=[
                    ItemAssignmentOut(
                        **_item_out(line.item).model_dump(),
                        unit_price=line.unit_price,
                        line_cost=line.line_cost,
                    )
                    for line in rec.items
                ],
                subtotal=rec.subtotal,
                travel_time=rec.travel_time,
                dwell_minutes=rec.dwell_minutes,
            )
            for rec in result.stores
        ],
        total_estimated_cost=result.total_estimated_cost,
        total_estimated_time=result.total_estimated_time,
        unfulfilled=[_item_out(i) for i in result.unfulfilled],
        warnings=result.warnings,
        feasible=result.feasible,
    )


@router.get("/shopping/stores", response_model=list[StoreOut])
def get_stores(
    price_level: Optional[str] = Query(None),
    open_at: Optional[datetime] = Query(None),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: Optional[float] = Query(None, gt=0),
    user_id: str = Depends(get_current_user),
):
    """Store catalog, optionally filtered by price level, opening time and distance."""
    if (lat is None) != (lng is None):
        raise InvalidInputError("lat and lng must be given together")
    near = Location(lat, lng) if lat is not None else None
    stores = list_stores(
        price_level=price_level,
        open_at=to_wall_clock(open_at) if open_at else None,
        near=near,
        radius_km=radius_km,
    )
    return [StoreOut(**s.to_dict()) for s in stores]


@router.post("/shopping/optimize", response_model=OptimizedShoppingListOut)
def optimize_shopping(
    request: OptimizeRequest,
    user_id: str = Depends(get_current_user),
    travel_lookup: TravelLookup = Depends(get_travel_lookup),
):
    """Assign items to stores. Limit violations come back as warnings, not errors."""
    result = optimize(
        [i.to_item() for i in request.items],
        DEFAULT_STORES,
        strategy=request.strategy,
        constraints=request.constraints.to_constraints(),
        home=request.home.to_location() if request.home else None,
        travel_lookup=travel_lookup,
        travel_method=request.travel_method,
    )
    return shopping_response(result)

# digilib/api/routers/cart.py
from fastapi import APIRouter, Depends, HTTPException, Query

from digilib.api.deps import get_cart_service
from digilib.domain.schemas import CartAddOut, CartClearOut, CartItemIn, CartOut
from digilib.domain.states import AddOutcome
from digilib.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


def _cart_view(svc: CartService, session_key: str) -> dict:
    items = svc.list(session_key)
    return {"session_key": session_key, "items": items, "count": len(items)}


@router.get("", response_model=CartOut)
def get_cart(
    session_key: str = Query(..., min_length=8, max_length=128),
    svc: CartService = Depends(get_cart_service),
):
    return _cart_view(svc, session_key)


@router.post("/add", response_model=CartAddOut)
def add_item(payload: CartItemIn, svc: CartService = Depends(get_cart_service)):
    """
    ALREADY_PRESENT to nie błąd, klient dostaje 200 z innym statusem.
    """
    outcome = svc.add(payload.session_key, payload.item_id)

    if outcome is AddOutcome.ITEM_UNAVAILABLE:
        raise HTTPException(status_code=404, detail="Książka nie istnieje w katalogu")
    if outcome is AddOutcome.CART_FULL:
        raise HTTPException(status_code=409, detail=f"Koszyk jest pełny (max {svc.max_items} pozycji)")

    return {"status": outcome.value, "cart": _cart_view(svc, payload.session_key)}


@router.post("/remove", response_model=CartOut)
def remove_item(payload: CartItemIn, svc: CartService = Depends(get_cart_service)):
    if not svc.remove(payload.session_key, payload.item_id):
        raise HTTPException(status_code=404, detail="Pozycji nie ma w koszyku")
    return _cart_view(svc, payload.session_key)


@router.delete("/clear", response_model=CartClearOut)
def clear_cart(
    session_key: str = Query(..., min_length=8, max_length=128),
    svc: CartService = Depends(get_cart_service),
):
    return {"removed": svc.clear(session_key)}

#app/api/routers/guest_carts.py
from typing import List

from fastapi import APIRouter, Depends, Header, HTTPException, Response

from app.domain.schemas import (
    GuestCart,
    GuestCartCountOut,
    GuestCartItemIn,
    GuestCartItemUpdate,
    GuestCartSyncResult,
)
from app.repos.guest_cart_repo import GuestCartRepo
from app.services.checkout_client import CheckoutApiClient
from app.services.guest_cart_service import GuestCartService

router = APIRouter(prefix="/guest-carts", tags=["guest-carts"])


def get_guest_cart_repo() -> GuestCartRepo:
    return GuestCartRepo()


def get_checkout_client() -> CheckoutApiClient:
    return CheckoutApiClient()


def get_service(guest_id: str, repo: GuestCartRepo) -> GuestCartService:
    return GuestCartService(guest_id, repo=repo)


@router.get("/{guest_id}", response_model=List[GuestCart])
def get_guest_carts(guest_id: str, repo: GuestCartRepo = Depends(get_guest_cart_repo)):
    return get_service(guest_id, repo).get_guest_carts()


@router.get("/{guest_id}/count", response_model=GuestCartCountOut)
def get_total_count(guest_id: str, repo: GuestCartRepo = Depends(get_guest_cart_repo)):
    return GuestCartCountOut(count=get_service(guest_id, repo).get_total_guest_cart_items())


@router.get("/{guest_id}/stores/{store_id}", response_model=GuestCart)
def get_guest_cart(guest_id: str, store_id: int, repo: GuestCartRepo = Depends(get_guest_cart_repo)):
    cart = get_service(guest_id, repo).get_guest_cart(store_id)
    if not cart:
        raise HTTPException(status_code=404, detail="Guest cart not found")
    return cart


@router.get("/{guest_id}/stores/{store_id}/count", response_model=GuestCartCountOut)
def get_store_count(guest_id: str, store_id: int, repo: GuestCartRepo = Depends(get_guest_cart_repo)):
    count = get_service(guest_id, repo).get_guest_cart_item_count(store_id)
    return GuestCartCountOut(store_id=store_id, count=count)


@router.post("/{guest_id}/items", response_model=GuestCart, status_code=201)
def add_item(guest_id: str, payload: GuestCartItemIn, repo: GuestCartRepo = Depends(get_guest_cart_repo)):
    svc = get_service(guest_id, repo)
    return svc.add_to_guest_cart(payload.store_id, payload.product_id, payload.quantity)


@router.patch("/{guest_id}/stores/{store_id}/items/{product_id}")
def update_item(
    guest_id: str,
    store_id: int,
    product_id: int,
    payload: GuestCartItemUpdate,
    repo: GuestCartRepo = Depends(get_guest_cart_repo),
):
    cart = get_service(guest_id, repo).update_guest_cart_item(store_id, product_id, payload.quantity)
    if cart is None:
        #koszyk zniknal (ostatnia pozycja usunieta) albo go nie bylo
        return Response(status_code=204)
    return cart.model_dump(mode="json", by_alias=True)


@router.delete("/{guest_id}/stores/{store_id}/items/{product_id}", status_code=204)
def remove_item(guest_id: str, store_id: int, product_id: int, repo: GuestCartRepo = Depends(get_guest_cart_repo)):
    get_service(guest_id, repo).remove_from_guest_cart(store_id, product_id)
    return Response(status_code=204)


@router.delete("/{guest_id}/stores/{store_id}", status_code=204)
def clear_store_cart(guest_id: str, store_id: int, repo: GuestCartRepo = Depends(get_guest_cart_repo)):
    get_service(guest_id, repo).clear_guest_cart(store_id)
    return Response(status_code=204)


@router.delete("/{guest_id}", status_code=204)
def clear_all(guest_id: str, repo: GuestCartRepo = Depends(get_guest_cart_repo)):
    get_service(guest_id, repo).clear_all_guest_carts()
    return Response(status_code=204)


@router.post("/{guest_id}/sync/{store_id}", response_model=GuestCartSyncResult)
def sync_guest_cart(
    guest_id: str,
    store_id: int,
    authorization: str = Header(..., description="Bearer token zalogowanego uzytkownika"),
    repo: GuestCartRepo = Depends(get_guest_cart_repo),
    client: CheckoutApiClient = Depends(get_checkout_client),
):
    token = authorization.removeprefix("Bearer ").strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    svc = get_service(guest_id, repo)
    return svc.sync_guest_cart(
        store_id,
        lambda sid, product_id, quantity: client.add_to_cart(sid, product_id, quantity, token=token),
    )

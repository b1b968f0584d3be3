from __future__ import annotations

from fastapi import APIRouter, Depends

from ...db import SessionStore
from ...errors import NotFound
from ...models import DeletePolicy
from ..deps import get_store
from ..schemas import CategoryDeleteOut, CategoryIn, CategoryOut, CategoryRenameIn

router = APIRouter(prefix="/api/v1", tags=["categories"])


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(store: SessionStore = Depends(get_store)) -> list[CategoryOut]:
    return [CategoryOut.of(item) for item in store.list_categories()]


@router.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryIn, store: SessionStore = Depends(get_store)) -> CategoryOut:
    category_id = store.create_category(payload.name, color=payload.color)
    return get_category(category_id, store)


@router.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, store: SessionStore = Depends(get_store)) -> CategoryOut:
    item = store.get_category(category_id)
    if item is None:
        raise NotFound(f"category {category_id} not found")
    return CategoryOut.of(item)


@router.patch("/categories/{category_id}", response_model=CategoryOut)
def rename_category(
    category_id: int,
    payload: CategoryRenameIn,
    store: SessionStore = Depends(get_store),
) -> CategoryOut:
    return CategoryOut.of(store.rename_category(category_id, payload.name))


@router.delete("/categories/{category_id}", response_model=CategoryDeleteOut)
def delete_category(
    category_id: int,
    policy: DeletePolicy = DeletePolicy.REJECT_IF_REFERENCED,
    store: SessionStore = Depends(get_store),
) -> CategoryDeleteOut:
    removed = store.delete_category(category_id, policy)
    return CategoryDeleteOut(id=category_id, policy=policy, intervals_removed=removed)

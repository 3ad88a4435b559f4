"""
Product routes.

``/api/products`` is not covered by the route guard: it checks the session
itself and answers 401 instead of redirecting, since API callers cannot
follow a login redirect.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from oidc_rp.auth.session import get_optional_session
from oidc_rp.models import Product, SessionRecord

logger = logging.getLogger(__name__)

products_router = APIRouter(tags=["products"])

PRODUCTS: List[Product] = [
    Product(
        id="p-1001",
        name="Wireless Headphones",
        price=129.99,
        description="Noise-cancelling over-ear headphones",
    ),
    Product(
        id="p-1002",
        name="Smartwatch",
        price=199.0,
        description="Fitness tracking and notifications",
    ),
    Product(
        id="p-1003",
        name="Mechanical Keyboard",
        price=89.5,
        description="RGB backlit, blue switches",
    ),
]


def _catalogue() -> List[dict]:
    return [product.model_dump() for product in PRODUCTS]


@products_router.get("/api/products")
async def list_products(session: Optional[SessionRecord] = Depends(get_optional_session)):
    """
    Return the product list.

    Returns:
        ``{"products": [...]}``, or 401 ``{"error": "Unauthorized"}`` without
        a valid session
    """
    if session is None:
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    logger.debug("Serving products", extra={"user_id": session.user.sub})
    return {"products": _catalogue()}


@products_router.get("/products")
async def products_page(
    request: Request,
    session: Optional[SessionRecord] = Depends(get_optional_session),
):
    if session is None:
        return RedirectResponse(url=request.app.state.settings.LOGIN_PATH, status_code=302)

    return {
        "user": session.user.display_name,
        "products": _catalogue(),
    }

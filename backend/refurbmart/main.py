"""
Refurbished Electronics Marketplace API with OpenTelemetry Instrumentation
"""

import logging
import os
import time
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.routing import Match

from refurbmart import crud, metrics, orders, schemas, security
from refurbmart.config import Settings, configure_logging
from refurbmart.database import Database
from refurbmart.errors import (
    ForbiddenError,
    MarketplaceError,
    NotFoundError,
    UnauthorizedError,
)
from refurbmart.models import OrderStatus, ProductCondition, Role
from refurbmart.security import Principal

logger = logging.getLogger("refurbmart")

INVALID_CREDENTIALS = "Invalid email or password"

bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request):
    yield from request.app.state.database.session()


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Principal:
    token = credentials.credentials if credentials else None
    principal = security.authenticate(token, settings)
    if crud.get_user(db, principal.id) is None:
        raise UnauthorizedError("Not authorized, user not found")
    return principal


def require_role(role: Role):
    def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        security.authorize(principal, role)
        return principal

    return dependency


def product_filters(
    category: Optional[str] = None,
    brand: Optional[str] = None,
    condition: Optional[ProductCondition] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    search_term: Optional[str] = Query(None, alias="searchTerm"),
    seller_id: Optional[int] = Query(None, alias="sellerId"),
    sort_by: Literal["createdAt", "price", "name", "updatedAt"] = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: int = Query(crud.DEFAULT_PAGE_SIZE, ge=1, le=crud.MAX_PAGE_SIZE),
) -> dict:
    """Catalog query string shared by the public and admin listings."""
    return {
        "category": category,
        "brand": brand,
        "condition": condition,
        "min_price": min_price,
        "max_price": max_price,
        "search_term": search_term,
        "seller_id": seller_id,
        "sort_by": sort_by,
        "sort_order": sort_order,
        "page": page,
        "limit": limit,
    }


def _product_page(products, total: int, filters: dict) -> dict:
    return {
        "products": products,
        "total_pages": crud.total_pages(total, filters["limit"]),
        "current_page": filters["page"],
        "total_products": total,
    }


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _route_label(app: FastAPI, request: Request) -> str:
    for route in app.router.routes:
        match, _ = route.matches(request.scope)
        if match is Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


def _bootstrap_admin(database: Database, settings: Settings) -> None:
    if not (settings.admin_email and settings.admin_password):
        return
    db = database.SessionLocal()
    try:
        if crud.get_user_by_email(db, settings.admin_email) is None:
            crud.create_user(
                db,
                name=settings.admin_name,
                email=settings.admin_email,
                password_hash=security.hash_password(settings.admin_password, settings.bcrypt_rounds),
                role=Role.ADMIN,
            )
            logger.info("Created bootstrap admin account %s", settings.admin_email)
    finally:
        db.close()


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    database = Database(settings.database_url)

    app = FastAPI(
        title="Refurbmart API",
        description="Refurbished electronics marketplace backend with observability features",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        start_time = time.time()
        endpoint = _route_label(app, request)
        status_code = 500  # stays 500 if a handler raises
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            metrics.http_requests_total.labels(
                method=request.method, endpoint=endpoint, status=str(status_code)
            ).inc()
            metrics.http_request_duration_seconds.labels(
                method=request.method, endpoint=endpoint
            ).observe(time.time() - start_time)

    # ------------------------------------------------------------------------
    # Error translation: every failure becomes {"success": false, "error": ...}
    # ------------------------------------------------------------------------

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if not errors:
            return _error(400, "Invalid request")
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
        return _error(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = "Internal server error"
        if not settings.is_production:
            message = f"{message}: {exc}"
        return _error(500, message)

    @app.on_event("startup")
    async def startup_event():
        database.create_all()
        _bootstrap_admin(database, settings)
        logger.info("Refurbmart backend started (env=%s)", settings.environment)

    @app.on_event("shutdown")
    async def shutdown_event():
        database.dispose()

    # ------------------------------------------------------------------------
    # Health / metrics
    # ------------------------------------------------------------------------

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "refurbmart"}

    @app.get("/metrics")
    async def prometheus_metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # ------------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------------

    @app.post("/api/auth/register", response_model=schemas.AuthResponse, status_code=201)
    def register(body: schemas.UserRegister, db: Session = Depends(get_db)):
        password_hash = security.hash_password(body.password, settings.bcrypt_rounds)
        user = crud.create_user(db, name=body.name, email=body.email, password_hash=password_hash, role=body.role)
        logger.info("Registered %s account %s", user.role.value, user.id)
        token = security.create_access_token(user.id, user.role, settings)
        return {"token": token, "user": user}

    @app.post("/api/auth/login", response_model=schemas.AuthResponse)
    def login(body: schemas.UserLogin, db: Session = Depends(get_db)):
        user = crud.get_user_by_email(db, body.email)
        if user is None:
            security.burn_password_check(body.password, settings.bcrypt_rounds)
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not security.verify_password(body.password, user.password_hash):
            raise UnauthorizedError(INVALID_CREDENTIALS)
        token = security.create_access_token(user.id, user.role, settings)
        return {"token": token, "user": user}

    # ------------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------------

    @app.get("/api/users/profile", response_model=schemas.UserOut)
    def get_profile(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
        return crud.get_user(db, principal.id)

    @app.put("/api/users/profile", response_model=schemas.UserOut)
    def update_profile(
        body: schemas.UserUpdate,
        principal: Principal = Depends(get_principal),
        db: Session = Depends(get_db),
    ):
        return crud.update_user(db, crud.get_user(db, principal.id), body)

    @app.patch("/api/users/profile/change-password", response_model=schemas.MessageResponse)
    def change_password(
        body: schemas.PasswordChange,
        principal: Principal = Depends(get_principal),
        db: Session = Depends(get_db),
    ):
        user = crud.get_user(db, principal.id)
        if not security.verify_password(body.old_password, user.password_hash):
            raise UnauthorizedError("Invalid old password")
        crud.set_password_hash(db, user, security.hash_password(body.new_password, settings.bcrypt_rounds))
        return {"message": "Password changed successfully"}

    @app.get("/api/users/admin/users/{user_id}", response_model=schemas.UserOut)
    def admin_get_user(
        user_id: int,
        principal: Principal = Depends(require_role(Role.ADMIN)),
        db: Session = Depends(get_db),
    ):
        user = crud.get_user(db, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    # ------------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------------

    @app.post("/api/products", response_model=schemas.ProductOut, status_code=201)
    def create_product(
        body: schemas.ProductCreate,
        principal: Principal = Depends(require_role(Role.SELLER)),
        db: Session = Depends(get_db),
    ):
        return crud.create_product(db, body, seller_id=principal.id)

    @app.get("/api/products", response_model=schemas.ProductPage)
    def list_products(filters: dict = Depends(product_filters), db: Session = Depends(get_db)):
        products, total = crud.list_products(db, approved=True, **filters)
        return _product_page(products, total, filters)

    @app.get("/api/products/admin", response_model=schemas.ProductPage)
    def admin_list_products(
        approved: Optional[bool] = None,
        filters: dict = Depends(product_filters),
        principal: Principal = Depends(require_role(Role.ADMIN)),
        db: Session = Depends(get_db),
    ):
        # Includes unapproved listings unless ?approved= narrows it
        products, total = crud.list_products(db, approved=approved, **filters)
        return _product_page(products, total, filters)

    @app.get("/api/products/{product_id}", response_model=schemas.ProductOut)
    def get_product(product_id: int, db: Session = Depends(get_db)):
        product = crud.get_product(db, product_id)
        if product is None or not product.approved:
            raise NotFoundError("Product not found or not approved")
        return product

    def _owned_product(db: Session, principal: Principal, product_id: int):
        product = crud.get_product(db, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if principal.role is not Role.ADMIN and product.seller_id != principal.id:
            raise ForbiddenError("Not authorized to modify this product")
        return product

    @app.put("/api/products/{product_id}", response_model=schemas.ProductOut)
    def update_product(
        product_id: int,
        body: schemas.ProductUpdate,
        principal: Principal = Depends(require_role(Role.SELLER)),
        db: Session = Depends(get_db),
    ):
        product = _owned_product(db, principal, product_id)
        update_data = body.model_dump(exclude_unset=True)
        if principal.role is Role.ADMIN:
            if update_data.get("approved") is None:
                update_data.pop("approved", None)
        else:
            # Any seller edit sends the listing back to the approval queue
            update_data["approved"] = False
        return crud.update_product(db, product, update_data)

    @app.delete("/api/products/{product_id}", response_model=schemas.MessageResponse)
    def delete_product(
        product_id: int,
        principal: Principal = Depends(require_role(Role.SELLER)),
        db: Session = Depends(get_db),
    ):
        crud.delete_product(db, _owned_product(db, principal, product_id))
        return {"message": "Product deleted successfully"}

    @app.patch("/api/products/{product_id}/approve", response_model=schemas.ProductOut)
    def approve_product(
        product_id: int,
        principal: Principal = Depends(require_role(Role.ADMIN)),
        db: Session = Depends(get_db),
    ):
        product = crud.get_product(db, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        return crud.update_product(db, product, {"approved": True})

    # ------------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------------

    @app.post("/api/orders", response_model=schemas.OrderOut, status_code=201)
    def create_order(
        body: schemas.OrderCreate,
        principal: Principal = Depends(require_role(Role.BUYER)),
        db: Session = Depends(get_db),
    ):
        try:
            order = orders.place_order(db, principal.id, body)
        except MarketplaceError as exc:
            metrics.orders_total.labels(status="error" if exc.status_code >= 500 else "rejected").inc()
            raise
        metrics.orders_total.labels(status="success").inc()
        metrics.revenue_total.inc(order.total_amount)
        return order

    @app.get("/api/orders/my-orders", response_model=schemas.OrderPage)
    def my_orders(
        page: int = Query(1, ge=1),
        limit: int = Query(crud.DEFAULT_PAGE_SIZE, ge=1, le=crud.MAX_PAGE_SIZE),
        principal: Principal = Depends(get_principal),
        db: Session = Depends(get_db),
    ):
        rows, total = crud.list_orders_for_buyer(db, principal.id, page=page, limit=limit)
        return {
            "orders": rows,
            "total_pages": crud.total_pages(total, limit),
            "current_page": page,
            "total_orders": total,
        }

    @app.get("/api/orders/seller-orders", response_model=schemas.OrderPage)
    def seller_orders(
        status: Optional[OrderStatus] = None,
        seller_id: Optional[int] = Query(None, alias="sellerId"),
        page: int = Query(1, ge=1),
        limit: int = Query(crud.DEFAULT_PAGE_SIZE, ge=1, le=crud.MAX_PAGE_SIZE),
        principal: Principal = Depends(require_role(Role.SELLER)),
        db: Session = Depends(get_db),
    ):
        # Sellers always see their own; admins pick a seller or see everything
        target = seller_id if principal.role is Role.ADMIN else principal.id
        rows, total = crud.list_orders_for_seller(db, target, status=status, page=page, limit=limit)
        return {
            "orders": rows,
            "total_pages": crud.total_pages(total, limit),
            "current_page": page,
            "total_orders": total,
        }

    @app.get("/api/orders/{order_id}", response_model=schemas.OrderOut)
    def get_order(
        order_id: int,
        principal: Principal = Depends(get_principal),
        db: Session = Depends(get_db),
    ):
        order = crud.get_order(db, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if not orders.can_view_order(principal, order):
            raise ForbiddenError("Not authorized to view this order")
        return order

    @app.patch("/api/orders/{order_id}/status", response_model=schemas.OrderOut)
    def update_order_status(
        order_id: int,
        body: schemas.OrderStatusUpdate,
        principal: Principal = Depends(get_principal),
        db: Session = Depends(get_db),
    ):
        return orders.change_order_status(db, principal, order_id, body.status)

    FastAPIInstrumentor.instrument_app(app)
    return app


# Serve with: uvicorn --factory refurbmart.main:create_app
if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)

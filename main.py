import logging
import os
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError as PydanticValidationError
from pymongo.database import Database

import accounts
import catalog
import orders
import ratings
from database import connect, ensure_indexes, get_db
from errors import AppError, InternalError, ValidationError
from mailer import Mailer
from schemas import (
    AdminUserUpdateBody,
    CategoryForm,
    ChangePasswordBody,
    ContactBody,
    ForgotPasswordBody,
    LoginBody,
    OrderCreateBody,
    PaymentBody,
    ProductForm,
    ProductUpdateForm,
    ProfileUpdateBody,
    RateBody,
    RegisterAdminBody,
    RegisterBody,
    ResetPasswordBody,
    StatusBody,
)
from security import TokenService, get_admin_user, get_current_user, get_settings, get_tokens, public_user
from settings import Settings
from uploads import UploadResolver

logger = logging.getLogger(__name__)


# ----------------------- Utils -----------------------
def get_uploader(request: Request) -> UploadResolver:
    return request.app.state.uploader


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def _clean_message(msg: str) -> str:
    prefix = "Value error, "
    return msg[len(prefix):] if msg.startswith(prefix) else msg


def _error_list(errors) -> List[dict]:
    return [
        {"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "message": _clean_message(e.get("msg", ""))}
        for e in errors
    ]


def parse_form(model, **data):
    """Validate multipart fields against a schema, mapping failures to a 400."""
    try:
        return model(**data)
    except PydanticValidationError as exc:
        errors = _error_list(exc.errors())
        raise ValidationError(f"{errors[0]['field']}: {errors[0]['message']}" if errors else "Invalid request")


# ----------------------- Health -----------------------
health_router = APIRouter(tags=["health"])


@health_router.get("/")
def root():
    return {"message": "Trybee API running"}


@health_router.get("/api/health")
def health(request: Request):
    response = {"status": "ok", "database": "unavailable"}
    db = request.app.state.db
    if db is not None:
        try:
            db.list_collection_names()
            response["database"] = "connected"
        except Exception as e:
            response["database"] = f"error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/register", status_code=201)
def register(body: RegisterBody, db: Database = Depends(get_db), tokens: TokenService = Depends(get_tokens),
             settings: Settings = Depends(get_settings)):
    return accounts.register(db, tokens, settings, body)


@auth_router.post("/register-admin", status_code=201)
def register_admin(body: RegisterAdminBody, db: Database = Depends(get_db), tokens: TokenService = Depends(get_tokens),
                   settings: Settings = Depends(get_settings)):
    return accounts.register_admin(db, tokens, settings, body)


@auth_router.post("/login")
def login(body: LoginBody, db: Database = Depends(get_db), tokens: TokenService = Depends(get_tokens)):
    return accounts.login(db, tokens, body.email, body.password, expect_admin=body.is_admin)


@auth_router.post("/admin-login")
def admin_login(body: LoginBody, db: Database = Depends(get_db), tokens: TokenService = Depends(get_tokens)):
    return accounts.login(db, tokens, body.email, body.password, expect_admin=True)


@auth_router.get("/me")
def me(user=Depends(get_current_user)):
    return user


@auth_router.get("/validate-token")
def validate_token(user=Depends(get_current_user)):
    return {"valid": True, "user": public_user(user)}


@auth_router.get("/verify-token")
def verify_token(user=Depends(get_current_user)):
    return {"valid": True, "user": user}


@auth_router.post("/refresh-token")
def refresh_token(user=Depends(get_current_user), tokens: TokenService = Depends(get_tokens)):
    return accounts.refresh(tokens, user)


@auth_router.post("/forgot-password")
def forgot_password(body: ForgotPasswordBody, db: Database = Depends(get_db),
                    settings: Settings = Depends(get_settings), mailer: Mailer = Depends(get_mailer)):
    return {"message": accounts.request_password_reset(db, settings, mailer, body.email)}


@auth_router.get("/reset-password/{token}/validate")
def validate_reset_token(token: str, db: Database = Depends(get_db)):
    return {"valid": accounts.validate_reset_token(db, token)}


@auth_router.post("/reset-password/{token}")
def reset_password(token: str, body: ResetPasswordBody, db: Database = Depends(get_db),
                   settings: Settings = Depends(get_settings)):
    return {"message": accounts.reset_password(db, settings, token, body.email, body.password)}


# ----------------------- Products -----------------------
products_router = APIRouter(prefix="/api/products", tags=["products"])


@products_router.get("")
def list_products(category: Optional[str] = None, q: Optional[str] = None, db: Database = Depends(get_db)):
    return catalog.list_products(db, category=category, q=q)


@products_router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_product(db, product_id)


@products_router.post("", status_code=201)
def create_product(
    name: str = Form(...),
    description: str = Form(...),
    price: float = Form(...),
    category: str = Form(...),
    stock: int = Form(...),
    images: Optional[List[UploadFile]] = File(None),
    user=Depends(get_admin_user),
    db: Database = Depends(get_db),
    uploader: UploadResolver = Depends(get_uploader),
):
    form = parse_form(ProductForm, name=name.strip(), description=description.strip(), price=price,
                      category=category, stock=stock)
    return catalog.create_product(db, uploader, form, images or [])


@products_router.put("/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    category: Optional[str] = Form(None),
    stock: Optional[int] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    user=Depends(get_admin_user),
    db: Database = Depends(get_db),
    uploader: UploadResolver = Depends(get_uploader),
):
    form = parse_form(ProductUpdateForm, name=name or None, description=description or None, price=price,
                      category=category or None, stock=stock)
    return catalog.update_product(db, uploader, product_id, form, images)


@products_router.delete("/{product_id}")
def delete_product(product_id: str, user=Depends(get_admin_user), db: Database = Depends(get_db),
                   uploader: UploadResolver = Depends(get_uploader)):
    product, outcome = catalog.delete_product(db, uploader, product_id)
    return {
        "message": "Product deleted successfully",
        "product": product,
        "image_cleanup_failures": len(outcome.failures),
    }


@products_router.post("/{product_id}/rate")
def rate_product(product_id: str, body: RateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return ratings.rate_product(db, product_id, user["id"], body.rating)


@products_router.get("/{product_id}/userRating")
def get_user_rating(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return ratings.get_user_rating(db, product_id, user["id"])


# ----------------------- Categories -----------------------
categories_router = APIRouter(prefix="/api/categories", tags=["categories"])


@categories_router.get("")
def list_categories(db: Database = Depends(get_db)):
    return catalog.list_categories(db)


@categories_router.get("/{category_id}")
def get_category(category_id: str, db: Database = Depends(get_db)):
    return catalog.get_category(db, category_id)


@categories_router.post("", status_code=201)
def create_category(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    parent: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    user=Depends(get_admin_user),
    db: Database = Depends(get_db),
    uploader: UploadResolver = Depends(get_uploader),
):
    form = CategoryForm(name=name, description=description, parent=parent)
    return catalog.create_category(db, uploader, form, image)


@categories_router.put("/{category_id}")
def update_category(
    category_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    parent: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    user=Depends(get_admin_user),
    db: Database = Depends(get_db),
    uploader: UploadResolver = Depends(get_uploader),
):
    form = CategoryForm(name=name, description=description, parent=parent)
    return catalog.update_category(db, uploader, category_id, form, image)


@categories_router.delete("/{category_id}")
def delete_category(category_id: str, user=Depends(get_admin_user), db: Database = Depends(get_db)):
    return {"message": catalog.delete_category(db, category_id)}


# ----------------------- Orders -----------------------
orders_router = APIRouter(prefix="/api/orders", tags=["orders"])


@orders_router.get("")
def list_orders(status: Optional[str] = None, page: int = 1, limit: int = 10,
                user=Depends(get_admin_user), db: Database = Depends(get_db)):
    return orders.list_orders(db, status=status, page=page, limit=limit)


@orders_router.get("/my-orders")
def my_orders(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return orders.list_user_orders(db, user["id"])


@orders_router.get("/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return orders.get_order(db, order_id, user)


@orders_router.post("", status_code=201)
def create_order(body: OrderCreateBody, request: Request, user=Depends(get_current_user),
                 db: Database = Depends(get_db)):
    placement = orders.create_order(db, user, body, on_stock_failure=request.app.state.stock_failure_hook)
    return placement.order


@orders_router.put("/{order_id}/status")
def update_order_status(order_id: str, body: StatusBody, user=Depends(get_admin_user),
                        db: Database = Depends(get_db)):
    return orders.update_status(db, order_id, body.status)


@orders_router.put("/{order_id}/pay")
def pay_order(order_id: str, body: PaymentBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return orders.record_payment(db, order_id, user, body.payment_result)


# ----------------------- Users -----------------------
users_router = APIRouter(prefix="/api/users", tags=["users"])


@users_router.get("/profile")
def get_profile(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return accounts.get_profile(db, user["id"])


@users_router.put("/profile")
def update_profile(body: ProfileUpdateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return accounts.update_profile(db, user["id"], body)


@users_router.post("/change-password")
def change_password(body: ChangePasswordBody, user=Depends(get_current_user), db: Database = Depends(get_db),
                    settings: Settings = Depends(get_settings)):
    return {"message": accounts.change_password(db, settings, user["id"], body.current_password, body.new_password)}


@users_router.delete("/delete-account")
def delete_account(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"message": accounts.delete_account(db, user["id"])}


@users_router.get("/wishlist")
def get_wishlist(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return accounts.get_wishlist(db, user["id"])


@users_router.post("/wishlist/{product_id}")
def add_to_wishlist(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return accounts.add_to_wishlist(db, user["id"], product_id)


@users_router.delete("/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return accounts.remove_from_wishlist(db, user["id"], product_id)


# ----------------------- Admin -----------------------
admin_router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(get_admin_user)])


@admin_router.get("/stats")
def admin_stats(db: Database = Depends(get_db)):
    return orders.sales_stats(db)


@admin_router.get("/users")
def admin_list_users(db: Database = Depends(get_db)):
    return accounts.list_users(db)


@admin_router.get("/users/{user_id}")
def admin_get_user(user_id: str, db: Database = Depends(get_db)):
    return accounts.get_user(db, user_id)


@admin_router.get("/users/{user_id}/orders")
def admin_user_orders(user_id: str, db: Database = Depends(get_db)):
    return orders.list_user_orders(db, user_id)


@admin_router.put("/users/{user_id}")
def admin_update_user(user_id: str, body: AdminUserUpdateBody, db: Database = Depends(get_db)):
    return accounts.admin_update_user(db, user_id, body)


@admin_router.delete("/users/{user_id}")
def admin_delete_user(user_id: str, db: Database = Depends(get_db)):
    return {"message": accounts.delete_user(db, user_id)}


@admin_router.get("/orders")
def admin_list_orders(db: Database = Depends(get_db)):
    orders_list = orders.list_all_orders(db)
    logger.info("Returning %d orders", len(orders_list))
    return orders_list


@admin_router.get("/orders/{order_id}")
def admin_get_order(order_id: str, db: Database = Depends(get_db)):
    return orders.fetch_order(db, order_id)


@admin_router.put("/orders/{order_id}")
def admin_update_order(order_id: str, body: StatusBody, db: Database = Depends(get_db)):
    return orders.update_status(db, order_id, body.status)


# ----------------------- Contact -----------------------
contact_router = APIRouter(prefix="/api/contact", tags=["contact"])


@contact_router.post("")
def contact(body: ContactBody, mailer: Mailer = Depends(get_mailer)):
    if not all([body.name, body.email, body.subject, body.message]):
        raise ValidationError("All fields are required")
    if not mailer.ensure_ready():
        raise InternalError("Email service not available")
    sent, error = mailer.send_contact(body.name, body.email, body.subject, body.message)
    if not sent:
        logger.error("Error sending contact form: %s", error)
        raise InternalError("Failed to send message")
    return {"message": "Message sent successfully"}


# ----------------------- App -----------------------
def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None,
               uploader: Optional[UploadResolver] = None, mailer: Optional[Mailer] = None,
               on_stock_failure=None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=logging.DEBUG if settings.is_development else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Trybee Store API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if db is None:
        db = connect(settings)
    if db is not None:
        ensure_indexes(db)
    if mailer is None:
        mailer = Mailer(settings)
        mailer.initialize()

    app.state.settings = settings
    app.state.db = db
    app.state.tokens = TokenService(settings)
    app.state.uploader = uploader or UploadResolver(settings)
    app.state.mailer = mailer
    app.state.stock_failure_hook = on_stock_failure

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = _error_list(exc.errors())
        message = errors[0]["message"] if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"message": message, "errors": errors})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content = {"message": "Server error"}
        if settings.is_development:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    for router in (health_router, auth_router, products_router, categories_router,
                   orders_router, users_router, admin_router, contact_router):
        app.include_router(router)

    os.makedirs(settings.upload_dir, exist_ok=True)
    # Older image URLs carry a doubled prefix.
    app.mount("/uploads/uploads", StaticFiles(directory=settings.upload_dir), name="uploads-legacy")
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")
    return app


# Build lazily: `uvicorn main:create_app --factory`.
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)

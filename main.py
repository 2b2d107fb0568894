import logging
import os
import secrets
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import cart as cart_ops
import catalog
import orders as order_ops
from auth import (
    clear_session_cookie,
    create_token,
    ensure_admin_account,
    get_optional_session,
    hash_password,
    public_user,
    require_admin,
    require_auth,
    require_customer,
    set_session_cookie,
    verify_password,
)
from config import CORS_ORIGINS, LOG_LEVEL, MAX_UPLOAD_BYTES, UPLOAD_DIR
from database import db, create_document, ensure_indexes
from schemas import ORDER_STATUSES, Customer, User as UserSchema, Product as ProductSchema

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("storefront")

os.makedirs(UPLOAD_DIR, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes()
    ensure_admin_account()
    logger.info("Storefront API ready (uploads in %s)", UPLOAD_DIR)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


# ----------------------- Errors -----------------------
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception("%s %s failed", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Server error"})


# ----------------------- Utils -----------------------
def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # convert datetimes
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def oid(id_str: str, what: str = "id") -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {what}")


def now_utc():
    return datetime.now(timezone.utc)


def load_user(session: dict) -> dict:
    try:
        user = db["user"].find_one({"_id": ObjectId(session["id"])})
    except (InvalidId, TypeError):
        user = None
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def product_or_404(slug: str) -> dict:
    doc = db["product"].find_one({"slug": slug})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return doc


def ensure_product_exists(product_id: str):
    if not catalog.products_by_ids([product_id]):
        raise HTTPException(status_code=404, detail="Product not found")


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProductCreateBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)


class ProductUpdateBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    image: Optional[str] = Field(None, min_length=1)


class CartAddBody(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)


class CartUpdateBody(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int


class ProductRefBody(BaseModel):
    product_id: str = Field(..., min_length=1)


class CheckoutBody(Customer):
    pass


class OrderStatusBody(BaseModel):
    status: str


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database(session=Depends(require_admin)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Catalog -----------------------
@app.get("/products")
def list_products(category: Optional[str] = None):
    return {"products": catalog.list_products(category)}


@app.get("/search")
def search(q: str = ""):
    return {"products": catalog.search_products(q)}


@app.get("/products/{slug}")
def get_product(slug: str):
    return {"product": catalog.map_product(product_or_404(slug))}


@app.get("/shipping/cities")
def shipping_cities():
    return {"cities": order_ops.shipping_cities()}


# ----------------------- Auth -----------------------
@app.post("/register", status_code=201)
def register(body: RegisterBody, response: Response):
    existing = db["user"].find_one({"$or": [{"username": body.username}, {"email": body.email}]})
    if existing:
        raise HTTPException(status_code=400, detail="Username or email already taken")
    user = UserSchema(
        username=body.username,
        email=body.email,
        password_hash=hash_password(body.password),
        role="user",
    )
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Username or email already taken")
    saved = {"_id": user_id, "email": body.email, "username": body.username, "role": "user"}
    token = create_token(saved)
    set_session_cookie(response, token)
    logger.info("User registered: %s (%s)", body.username, user_id)
    return {"message": "User registered successfully", "user": public_user(saved), "token": token}


@app.post("/login")
def login(body: LoginBody, response: Response):
    user = db["user"].find_one({"email": body.email})
    if not user or not verify_password(body.password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    token = create_token(user)
    set_session_cookie(response, token)
    return {"message": "Login successful", "user": public_user(user), "token": token}


@app.get("/me")
def me(session: Optional[dict] = Depends(get_optional_session)):
    return {"user": session}


@app.post("/logout")
def logout(response: Response):
    clear_session_cookie(response)
    return {"message": "Logged out"}


# ----------------------- Wishlist -----------------------
@app.get("/wishlist")
def get_wishlist(session=Depends(require_auth)):
    if session["role"] == "admin":
        return {"items": []}
    user = load_user(session)
    products = catalog.products_by_ids(user.get("wishlist", []))
    return {"items": [catalog.map_product(products[pid]) for pid in user.get("wishlist", []) if pid in products]}


@app.post("/wishlist/toggle")
def toggle_wishlist(body: ProductRefBody, session=Depends(require_customer)):
    user = load_user(session)
    current = user.get("wishlist", [])
    if body.product_id not in current:
        ensure_product_exists(body.product_id)
    wishlist, added = cart_ops.toggle(current, body.product_id)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"wishlist": wishlist, "updated_at": now_utc()}})
    return {"wishlist": wishlist, "added": added}


# ----------------------- Cart -----------------------
@app.get("/cart")
def get_cart(session=Depends(require_auth)):
    if session["role"] == "admin":
        return {"items": []}
    user = load_user(session)
    lines = user.get("cart", [])
    products = catalog.products_by_ids(line["product_id"] for line in lines)
    return {"items": cart_ops.detailed_cart(lines, products)}


def _save_cart(user: dict, lines: list):
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"cart": lines, "updated_at": now_utc()}})


@app.post("/cart/add")
def add_to_cart(body: CartAddBody, session=Depends(require_customer)):
    ensure_product_exists(body.product_id)
    user = load_user(session)
    lines = cart_ops.add_line(user.get("cart", []), body.product_id, body.quantity)
    _save_cart(user, lines)
    return {"message": "Added to cart", "cart": cart_ops.cart_view(lines)}


@app.post("/cart/update")
@app.patch("/cart")
def update_cart(body: CartUpdateBody, session=Depends(require_customer)):
    user = load_user(session)
    try:
        lines = cart_ops.set_line(user.get("cart", []), body.product_id, body.quantity)
    except LookupError:
        raise HTTPException(status_code=404, detail="Item not found")
    _save_cart(user, lines)
    return {"message": "Cart updated", "cart": cart_ops.cart_view(lines)}


def _remove_from_cart(product_id: str, session: dict):
    user = load_user(session)
    lines = cart_ops.remove_line(user.get("cart", []), product_id)
    _save_cart(user, lines)
    return {"message": "Item removed", "cart": cart_ops.cart_view(lines)}


@app.post("/cart/remove")
def remove_from_cart(body: ProductRefBody, session=Depends(require_customer)):
    return _remove_from_cart(body.product_id, session)


@app.delete("/cart/{product_id}")
def delete_cart_line(product_id: str, session=Depends(require_customer)):
    return _remove_from_cart(product_id, session)


# ----------------------- Orders -----------------------
@app.get("/orders")
def list_orders(session=Depends(require_auth)):
    if session["role"] == "admin":
        return {"orders": []}
    user = load_user(session)
    return {"orders": [order_ops.serialize_order(o) for o in user.get("orders", [])]}


@app.post("/orders/checkout")
def checkout(body: CheckoutBody, session=Depends(require_customer)):
    user = load_user(session)
    lines = user.get("cart", [])
    if not lines:
        raise HTTPException(status_code=400, detail="Cart is empty")
    products = catalog.products_by_ids(line["product_id"] for line in lines)
    order = order_ops.build_order(lines, products, Customer(**body.model_dump()))
    order_ops.place_order(user, order)
    return {"message": "Order placed", "order": order_ops.serialize_order(order.model_dump())}


# ----------------------- Admin: products -----------------------
@app.post("/admin/products", status_code=201)
@app.post("/products", status_code=201)
def create_product(body: ProductCreateBody, session=Depends(require_admin)):
    if catalog.find_by_name(body.name):
        raise HTTPException(status_code=400, detail="Product name already exists")
    slug = catalog.slugify(body.slug) if body.slug else ""
    if not slug or catalog.slug_exists(slug):
        slug = catalog.generate_unique_slug(body.name)
    product = ProductSchema(
        name=body.name,
        slug=slug,
        price=body.price,
        category=body.category.lower(),
        image=body.image,
    )
    try:
        pid = create_document("product", product)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Product name or slug already exists")
    logger.info("Product created: %s (%s) by %s", product.name, pid, session["email"])
    created = db["product"].find_one({"_id": ObjectId(pid)})
    return {"message": "Product added", "product": catalog.map_product(created)}


@app.patch("/admin/products/{slug}")
def update_product(slug: str, body: ProductUpdateBody, session=Depends(require_admin)):
    doc = product_or_404(slug)
    update = body.model_dump(exclude_none=True)
    if "name" in update and update["name"].lower() != doc["name"].strip().lower():
        clash = catalog.find_by_name(update["name"])
        if clash and clash["_id"] != doc["_id"]:
            raise HTTPException(status_code=400, detail="Product name already exists")
    if "category" in update:
        update["category"] = update["category"].lower()
    update["updated_at"] = now_utc()
    try:
        db["product"].update_one({"_id": doc["_id"]}, {"$set": update})
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Product name already exists")
    logger.info("Product updated: %s by %s", doc["_id"], session["email"])
    return {"message": "Product updated", "product": catalog.map_product(db["product"].find_one({"_id": doc["_id"]}))}


@app.delete("/admin/products/{slug}")
def delete_product(slug: str, session=Depends(require_admin)):
    doc = product_or_404(slug)
    catalog.delete_product(doc)
    return {"message": "Product deleted"}


# ----------------------- Admin: users -----------------------
@app.get("/admin/users")
def admin_users(session=Depends(require_admin)):
    users = db["user"].find({}, {"username": 1, "email": 1, "role": 1, "created_at": 1})
    return {"users": [serialize_doc(u) for u in users]}


@app.delete("/admin/users/{user_id}")
def admin_delete_user(user_id: str, session=Depends(require_admin)):
    uid = oid(user_id, "userId")
    user = db["user"].find_one({"_id": uid})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.get("role") == "admin":
        raise HTTPException(status_code=400, detail="Cannot delete an admin account")
    db["user"].delete_one({"_id": uid})
    logger.info("User deleted: %s by %s", user_id, session["email"])
    return {"message": "User deleted"}


# ----------------------- Admin: orders -----------------------
@app.get("/admin/orders")
def admin_orders(session=Depends(require_admin)):
    return {"orders": order_ops.all_orders()}


@app.patch("/admin/orders/{order_id}")
def admin_update_order(order_id: str, body: OrderStatusBody, session=Depends(require_admin)):
    if body.status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    if not order_ops.set_order_status(oid(order_id, "orderId"), body.status):
        raise HTTPException(status_code=404, detail="Order not found")
    return {"message": "Order updated"}


@app.delete("/admin/orders/{order_id}")
def admin_delete_order(order_id: str, session=Depends(require_admin)):
    if not order_ops.delete_order(oid(order_id, "orderId")):
        raise HTTPException(status_code=404, detail="Order not found")
    return {"message": "Order deleted"}


# ----------------------- Uploads -----------------------
# Stored extension comes from the content type, never the client filename.
IMAGE_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


@app.post("/upload", status_code=201)
def upload_image(request: Request, image: UploadFile = File(...), session=Depends(require_admin)):
    ext = IMAGE_EXTENSIONS.get((image.content_type or "").lower())
    if ext is None:
        raise HTTPException(status_code=400, detail="Only image files are allowed")
    data = image.file.read(MAX_UPLOAD_BYTES + 1)
    if not data:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File too large")
    filename = f"{int(time.time() * 1000)}-{secrets.randbelow(10 ** 9)}{ext}"
    with open(os.path.join(UPLOAD_DIR, filename), "wb") as fh:
        fh.write(data)
    public_path = f"/uploads/{filename}"
    logger.info("Uploaded %s (%s bytes)", filename, len(data))
    return {"url": str(request.base_url).rstrip("/") + public_path, "path": public_path}


@app.get("/test/uploads")
def list_uploads(session=Depends(require_admin)):
    files = sorted(os.listdir(UPLOAD_DIR))
    return {"upload_dir": UPLOAD_DIR, "files": files, "count": len(files)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import database
from database import create_document, ensure_indexes, get_db, utcnow
from listing import (
    CATEGORY_SORT_FIELDS,
    ORDER_SORT_FIELDS,
    PRODUCT_SORT_FIELDS,
    PRODUCT_SEARCH_FIELDS,
    USER_SORT_FIELDS,
    build_category_filter,
    build_order_filter,
    build_product_filter,
    build_user_filter,
    normalize_list_params,
    order_status_stats,
    paginate,
    resolve_sort,
    search_clause,
    user_role_stats,
    with_product_counts,
)
from orders import get_order_or_404, place_order, update_order_status
from schemas import (
    ORDER_STATUSES,
    AuthUser,
    CategoryCreate,
    CategoryUpdate,
    LoginRequest,
    OrderCreate,
    OrderStatusUpdate,
    ProductCreate,
    ProductUpdate,
    ProfileUpdate,
    RegisterRequest,
    UserCreate,
    UserUpdate,
)
from security import create_token, get_current_user, hash_password, require_admin, verify_password
from uploads import save_upload
from utils import USER_HIDDEN_FIELDS, doc_to_json, populate_orders, populate_products, to_object_id

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            ensure_indexes(database.db)
        except PyMongoError as e:
            logger.error(f"Could not create indexes: {e}")
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; data endpoints will answer 503")
    yield


app = FastAPI(title="Food Delivery Admin API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.CLIENT_URL.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(config.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")

# -------------------- Errors --------------------


def error_response(status_code: int, message: str, error: str = None, headers: dict = None) -> JSONResponse:
    content = {"success": False, "message": message}
    if error is not None:
        content["error"] = error
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = str(exc.detail)
    if exc.status_code == 404 and message == "Not Found":
        message = f"Not Found - {request.url.path}"
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        problems.append(f"{field}: {err['msg']}" if field else err["msg"])
    return error_response(400, "; ".join(problems) or "Invalid request")


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return error_response(400, "Duplicate field value entered")


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, "Internal server error", None if config.is_production() else str(exc))


# -------------------- Helpers --------------------


def page_json(page: dict) -> dict:
    return {**page, "data": [doc_to_json(d) for d in page["data"]]}


def public_user(user: dict) -> dict:
    return doc_to_json({k: user.get(k) for k in ("_id", "name", "email", "mobile", "role", "createdAt")})


def find_user_or_404(db: Database, user_id: str) -> dict:
    user = db["user"].find_one({"_id": to_object_id(user_id)}, USER_HIDDEN_FIELDS)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def find_category_or_404(db: Database, category_id: str) -> dict:
    category = db["category"].find_one({"_id": to_object_id(category_id)})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


def find_product_or_404(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": to_object_id(product_id)})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return populate_products(db, [product])[0]


def product_body(model):
    """Dependency reading a product payload from JSON or multipart form data.

    Multipart bodies may carry up to MAX_PRODUCT_IMAGES files under ``image``;
    the first one becomes the product image. Blank form fields count as absent.
    Returns ``(payload, image)`` where ``image`` is None for JSON bodies.
    """

    async def parse(request: Request):
        images = []
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
            form = await request.form()
            data = {}
            for key, value in form.multi_items():
                if isinstance(value, StarletteUploadFile):
                    if key == "image":
                        images.append(value)
                elif value != "":
                    data[key] = value
        else:
            try:
                data = await request.json()
            except ValueError:
                raise RequestValidationError([{"type": "json_invalid", "loc": ("body",), "msg": "JSON decode error"}])

        if len(images) > config.MAX_PRODUCT_IMAGES:
            raise HTTPException(status_code=400, detail=f"Too many files. Maximum is {config.MAX_PRODUCT_IMAGES}")
        try:
            payload = model.model_validate(data)
        except ValidationError as e:
            raise RequestValidationError([{**err, "loc": ("body", *err["loc"])} for err in e.errors()])
        return payload, (images[0] if images else None)

    return parse


def email_taken(db: Database, email: str, exclude_id=None) -> bool:
    query = {"email": email}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db["user"].find_one(query, {"_id": 1}) is not None


# -------------------- Health --------------------


@app.get("/")
def read_root():
    return {"message": "Food Delivery Admin API is running"}


@app.get("/api/health")
def health():
    response = {
        "success": True,
        "status": "ok",
        "message": "Food Delivery Admin API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": "Not Configured",
    }
    if database.db is not None:
        try:
            database.db.command("ping")
            response["database"] = "Connected"
        except PyMongoError as e:
            response["database"] = f"Error: {str(e)[:50]}"
    return response


# -------------------- Auth --------------------


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    if email_taken(db, payload.email):
        raise HTTPException(status_code=400, detail="User with this email already exists")
    pw_hash, salt = hash_password(payload.password)
    user_doc = {
        "name": payload.name,
        "email": payload.email,
        "mobile": None,
        "password_hash": pw_hash,
        "salt": salt,
        "role": (payload.role if config.ALLOW_REGISTER_ROLE else None) or "customer",
    }
    user_id = create_document(db, "user", user_doc)
    user = db["user"].find_one({"_id": to_object_id(user_id)})
    logger.info(f"Registered user {user_id} ({user['role']})")
    return {
        "success": True,
        "message": "User registered successfully",
        "data": {"token": create_token(user), "user": public_user(user)},
    }


@app.post("/api/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("salt", ""), user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {
        "success": True,
        "message": "Login successful",
        "data": {"token": create_token(user), "user": public_user(user)},
    }


@app.get("/api/auth/me")
def me(user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": {"user": public_user(find_user_or_404(db, user.id))}}


@app.put("/api/auth/profile")
def update_profile(payload: ProfileUpdate, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    current = find_user_or_404(db, user.id)
    update = {k: v for k, v in payload.model_dump(exclude={"password"}).items() if v is not None}
    if "email" in update and update["email"] != current["email"] and email_taken(db, update["email"], current["_id"]):
        raise HTTPException(status_code=400, detail="Email already taken")
    if payload.password:
        update["password_hash"], update["salt"] = hash_password(payload.password)
    update["updatedAt"] = utcnow()
    db["user"].update_one({"_id": current["_id"]}, {"$set": update})
    return {
        "success": True,
        "message": "Profile updated successfully",
        "data": doc_to_json(find_user_or_404(db, user.id)),
    }


@app.post("/api/auth/logout")
def logout(user: AuthUser = Depends(get_current_user)):
    # tokens are stateless; the client drops its copy
    return {"success": True, "message": "Logout successful"}


# -------------------- Users --------------------


@app.get("/api/users")
def list_users(request: Request, admin: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    query = request.query_params
    params = normalize_list_params(query)
    filt = build_user_filter(query)
    sort = resolve_sort(params.sort, USER_SORT_FIELDS, params.order)
    page = paginate(db["user"], filt, params, sort, USER_HIDDEN_FIELDS)
    return {"success": True, **page_json(page), "stats": user_role_stats(db["user"], filt)}


@app.get("/api/users/{user_id}")
def get_user(user_id: str, admin: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "data": doc_to_json(find_user_or_404(db, user_id))}


@app.post("/api/users", status_code=201)
def create_user(payload: UserCreate, admin: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    if email_taken(db, payload.email):
        raise HTTPException(status_code=400, detail="User with this email already exists")
    pw_hash, salt = hash_password(payload.password)
    user_doc = {**payload.model_dump(exclude={"password"}), "password_hash": pw_hash, "salt": salt}
    user_id = create_document(db, "user", user_doc)
    logger.info(f"Admin {admin.id} created user {user_id}")
    return {"success": True, "message": "User created successfully", "data": doc_to_json(find_user_or_404(db, user_id))}


@app.put("/api/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate, admin: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    user = find_user_or_404(db, user_id)
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "email" in update and email_taken(db, update["email"], user["_id"]):
        raise HTTPException(status_code=400, detail="Email already taken")
    update["updatedAt"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return {"success": True, "message": "User updated successfully", "data": doc_to_json(find_user_or_404(db, user_id))}


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, admin: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    user = find_user_or_404(db, user_id)
    db["user"].delete_one({"_id": user["_id"]})
    logger.info(f"Admin {admin.id} deleted user {user_id}")
    return {"success": True, "message": "User deleted successfully"}


# -------------------- Categories --------------------


@app.get("/api/categories")
def list_categories(request: Request, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    query = request.query_params
    params = normalize_list_params(query)
    filt = build_category_filter(query)
    sort = resolve_sort(params.sort, CATEGORY_SORT_FIELDS, params.order)
    page = paginate(db["category"], filt, params, sort)
    if query.get("includeProductCount") == "true":
        page["data"] = with_product_counts(db["product"], page["data"])
    return {"success": True, **page_json(page)}


@app.get("/api/categories/{category_id}")
def get_category(category_id: str, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": doc_to_json(find_category_or_404(db, category_id))}


@app.post("/api/categories", status_code=201)
def create_category(payload: CategoryCreate, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    if db["category"].find_one({"name": payload.name}, {"_id": 1}):
        raise HTTPException(status_code=400, detail="Category with this name already exists")
    category_id = create_document(db, "category", payload)
    return {
        "success": True,
        "message": "Category created successfully",
        "data": doc_to_json(find_category_or_404(db, category_id)),
    }


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: str,
    payload: CategoryUpdate,
    user: AuthUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    category = find_category_or_404(db, category_id)
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "name" in update and db["category"].find_one({"name": update["name"], "_id": {"$ne": category["_id"]}}, {"_id": 1}):
        raise HTTPException(status_code=400, detail="Category with this name already exists")
    update["updatedAt"] = utcnow()
    db["category"].update_one({"_id": category["_id"]}, {"$set": update})
    return {
        "success": True,
        "message": "Category updated successfully",
        "data": doc_to_json(find_category_or_404(db, category_id)),
    }


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    category = find_category_or_404(db, category_id)
    if config.BLOCK_CATEGORY_DELETE_WITH_PRODUCTS:
        in_use = db["product"].count_documents({"category": category["_id"]})
        if in_use:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot delete category: {in_use} product(s) still belong to it",
            )
    db["category"].delete_one({"_id": category["_id"]})
    return {"success": True, "message": "Category deleted successfully"}


# -------------------- Products --------------------


@app.get("/api/products")
def list_products(request: Request, db: Database = Depends(get_db)):
    query = request.query_params
    params = normalize_list_params(query)
    filt = build_product_filter(query)
    sort = resolve_sort(params.sort, PRODUCT_SORT_FIELDS, params.order)
    page = paginate(db["product"], filt, params, sort)
    page["data"] = populate_products(db, page["data"])
    return {"success": True, **page_json(page)}


@app.get("/api/products/search")
def search_products(q: str = Query(None), db: Database = Depends(get_db)):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    products = db["product"].find(search_clause(q, PRODUCT_SEARCH_FIELDS), {"name": 1, "price": 1, "category": 1}).limit(10)
    return {"success": True, "data": [doc_to_json(p) for p in products]}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return {"success": True, "data": doc_to_json(find_product_or_404(db, product_id))}


@app.post("/api/products", status_code=201)
def create_product(
    user: AuthUser = Depends(get_current_user),
    body: tuple = Depends(product_body(ProductCreate)),
    db: Database = Depends(get_db),
):
    payload, image = body
    category = find_category_or_404(db, payload.category)
    product = {**payload.model_dump(by_alias=True), "category": category["_id"]}
    if image is not None:
        product["imageUrl"] = save_upload(image)
    product_id = create_document(db, "product", product)
    logger.info(f"Product {product_id} created by {user.id}")
    return {
        "success": True,
        "message": "Product created successfully",
        "data": doc_to_json(find_product_or_404(db, product_id)),
    }


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    user: AuthUser = Depends(get_current_user),
    body: tuple = Depends(product_body(ProductUpdate)),
    db: Database = Depends(get_db),
):
    payload, image = body
    product = find_product_or_404(db, product_id)
    update = {k: v for k, v in payload.model_dump(by_alias=True).items() if v is not None}
    if "category" in update:
        update["category"] = find_category_or_404(db, update["category"])["_id"]
    if image is not None:
        update["imageUrl"] = save_upload(image)
    update["updatedAt"] = utcnow()
    db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    return {
        "success": True,
        "message": "Product updated successfully",
        "data": doc_to_json(find_product_or_404(db, product_id)),
    }


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    result = db["product"].delete_one({"_id": to_object_id(product_id)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "message": "Product deleted successfully"}


@app.post("/api/products/{product_id}/upload-image")
def upload_product_image(
    product_id: str,
    image: UploadFile = File(...),
    user: AuthUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    product = find_product_or_404(db, product_id)
    image_url = save_upload(image)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"imageUrl": image_url, "updatedAt": utcnow()}})
    return {
        "success": True,
        "message": "Image uploaded successfully",
        "data": doc_to_json(find_product_or_404(db, product_id)),
    }


# -------------------- Orders --------------------


@app.get("/api/orders")
def list_orders(request: Request, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    query = request.query_params
    params = normalize_list_params(query)
    filt = build_order_filter(db, query)
    sort = resolve_sort(params.sort, ORDER_SORT_FIELDS, params.order)
    page = paginate(db["order"], filt, params, sort)
    page["data"] = populate_orders(db, page["data"])
    return {"success": True, **page_json(page), "stats": order_status_stats(db["order"], filt)}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": doc_to_json(get_order_or_404(db, order_id))}


@app.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    order = place_order(db, payload)
    return {"success": True, "message": "Order created successfully", "data": doc_to_json(order)}


@app.put("/api/orders/{order_id}")
def set_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    user: AuthUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    order = update_order_status(db, order_id, payload.status)
    return {"success": True, "message": "Order status updated successfully", "data": doc_to_json(order)}


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str, admin: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    result = db["order"].delete_one({"_id": to_object_id(order_id)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info(f"Admin {admin.id} deleted order {order_id}")
    return {"success": True, "message": "Order deleted successfully"}


# -------------------- Dashboard --------------------


@app.get("/api/dashboard/stats")
def dashboard_stats(user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    orders = order_status_stats(db["order"], {})
    recent = list(db["order"].find().sort([("createdAt", -1), ("_id", -1)]).limit(10))
    return {
        "success": True,
        "data": {
            "totalUsers": db["user"].count_documents({}),
            "totalProducts": db["product"].count_documents({}),
            "totalOrders": orders["total"],
            "totalRevenue": orders["totalRevenue"],
            "ordersByStatus": {status: orders[status] for status in ORDER_STATUSES},
            "recentOrders": [doc_to_json(o) for o in populate_orders(db, recent)],
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)

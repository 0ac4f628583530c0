import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from config import settings
from database import PRODUCTS, USER_DEFAULTS, USERS
from dependencies import get_database, require_admin, require_token
from errors import AuthenticationError, InvalidInputError, NotFoundError, register_exception_handlers
from schemas import (
    LoginData,
    LoginRequest,
    Product as ProductSchema,
    ProductCreateRequest,
    ProductUpdateRequest,
    PublicUser,
    RegisterRequest,
    TokenInfo,
    UserLoginRequest,
    UserUpdateRequest,
)
from security import ACCESS_TOKEN_EXPIRES_IN, ensure_default_admin, public_user, validate_credentials, register_user

BASE_DIR = Path(__file__).resolve().parent
PUBLIC_DIR = BASE_DIR / "public"

# Never writable through PUT /api/users/{id}
PROTECTED_USER_FIELDS = ("password", "password_hash", "id", "email")

logging.basicConfig(
    level="INFO",
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("techlab")


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = database.connect(settings.database_url)
    app.state.db = client[settings.database_name]
    logger.info("MongoDB configured, database: %s", settings.database_name)
    await ensure_default_admin(app.state.db, settings)
    logger.info("%s ready on port %s (%s)", settings.app_name, settings.port, settings.environment)
    try:
        yield
    finally:
        logger.info("Shutting down %s...", settings.app_name)
        await client.close()


app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=settings.frontend_url != "*",
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

register_exception_handlers(app, debug=settings.is_development)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response


# Utilities

def envelope(data=None, message=None, **extra) -> dict:
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def require_id(value: str, label: str) -> str:
    value = value.strip()
    if not value:
        raise InvalidInputError(f"{label} ID is required")
    return value


def login_payload(result: dict) -> dict:
    data = LoginData(
        user=PublicUser(**public_user(result["user"])),
        token=TokenInfo(access_token=result["token"], expires_in=ACCESS_TOKEN_EXPIRES_IN),
    )
    return data.model_dump()


async def _login(db, email: str, password: str) -> dict:
    result = await validate_credentials(db, email, password)
    if not result:
        raise AuthenticationError("Invalid credentials")
    return envelope(login_payload(result), "Login successful")


@app.get("/health")
def health():
    return {
        "success": True,
        "status": "OK",
        "message": f"{settings.app_name} is running smoothly",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
    }


# Auth endpoints
@app.post("/auth/login")
async def login(payload: LoginRequest, db=Depends(get_database)):
    return await _login(db, payload.email, payload.password)


# Products endpoints
@app.get("/api/products")
async def list_products(db=Depends(get_database)):
    products = await database.get_documents(db, PRODUCTS)
    message = "Products retrieved successfully" if products else "No products registered"
    return envelope(products, message, count=len(products))


@app.get("/api/products/{product_id}")
async def get_product(product_id: str, db=Depends(get_database)):
    product_id = require_id(product_id, "Product")
    product = await database.get_document(db, PRODUCTS, product_id)
    if product is None:
        raise NotFoundError(f"No product exists with ID: {product_id}")
    return envelope(product, "Product retrieved successfully")


@app.post("/api/products/create", status_code=status.HTTP_201_CREATED)
async def create_product(payload: ProductCreateRequest, db=Depends(get_database), admin=Depends(require_admin)):
    prod = ProductSchema(**payload.model_dump(exclude_unset=True))
    prod_id = await database.create_document(db, PRODUCTS, prod)
    logger.info("Product %s created by %s", prod_id, admin.get("email"))
    return envelope(await database.get_document(db, PRODUCTS, prod_id), "Product created successfully")


@app.put("/api/products/{product_id}")
async def update_product(product_id: str, payload: ProductUpdateRequest, db=Depends(get_database),
                         admin=Depends(require_admin)):
    product_id = require_id(product_id, "Product")
    update_data = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if not update_data:
        if await database.get_document(db, PRODUCTS, product_id) is None:
            raise NotFoundError(f"No product exists with ID: {product_id}")
        raise InvalidInputError("No changes provided")
    product = await database.update_document(db, PRODUCTS, product_id, update_data)
    if product is None:
        raise NotFoundError(f"No product exists with ID: {product_id}")
    return envelope(product, "Product updated successfully")


@app.delete("/api/products/{product_id}")
async def delete_product(product_id: str, db=Depends(get_database), admin=Depends(require_admin)):
    product_id = require_id(product_id, "Product")
    if not await database.delete_document(db, PRODUCTS, product_id):
        raise NotFoundError(f"No product exists with ID: {product_id}")
    logger.info("Product %s deleted by %s", product_id, admin.get("email"))
    return envelope({"id": product_id}, "Product deleted successfully")


# Users endpoints
@app.post("/api/users", status_code=status.HTTP_201_CREATED)
async def create_user(payload: RegisterRequest, db=Depends(get_database)):
    user = await register_user(db, payload)
    data = {key: user.get(key) for key in ("id", "email", "name", "role", "created_at")}
    return envelope(data, "User created successfully")


@app.post("/api/users/login")
async def login_user(payload: UserLoginRequest, db=Depends(get_database)):
    return await _login(db, payload.email, payload.password)


@app.get("/api/users")
async def list_users(db=Depends(get_database), claims=Depends(require_token)):
    users = await database.get_documents(db, USERS, defaults=USER_DEFAULTS)
    return envelope(users, "Users retrieved successfully", count=len(users))


@app.get("/api/users/{user_id}")
async def get_user(user_id: str, db=Depends(get_database), claims=Depends(require_token)):
    user_id = require_id(user_id, "User")
    user = await database.get_document(db, USERS, user_id, USER_DEFAULTS)
    if user is None:
        raise NotFoundError("User not found")
    return envelope(user, "User retrieved successfully")


@app.put("/api/users/{user_id}")
async def update_user(user_id: str, payload: UserUpdateRequest, db=Depends(get_database),
                      claims=Depends(require_token)):
    user_id = require_id(user_id, "User")
    update_data = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    user = await database.update_document(
        db, USERS, user_id, update_data, protected=PROTECTED_USER_FIELDS, defaults=USER_DEFAULTS
    )
    if user is None:
        raise NotFoundError("User not found")
    return envelope(user, "User updated successfully")


class DashboardFiles(StaticFiles):
    """Static files that answer unknown paths with index.html."""

    async def get_response(self, path: str, scope):
        try:
            response = await super().get_response(path, scope)
        except StarletteHTTPException as exc:
            if exc.status_code != status.HTTP_404_NOT_FOUND:
                raise
            return await super().get_response("index.html", scope)
        if response.status_code == status.HTTP_404_NOT_FOUND:
            return await super().get_response("index.html", scope)
        return response


# Dashboard: mounted last so the API routes above take precedence
if PUBLIC_DIR.exists():
    app.mount("/", DashboardFiles(directory=str(PUBLIC_DIR), html=True), name="dashboard")
else:
    logger.info("Dashboard folder not found at %s", PUBLIC_DIR)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)

import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "8000"))

# -------------------- Uploads --------------------

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", "5242880"))
DEFAULT_MIME_TYPES = ["image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"]
DEFAULT_EXTENSIONS = [".jpeg", ".jpg", ".png", ".gif", ".webp"]
ALLOWED_FILE_TYPES = os.getenv("ALLOWED_FILE_TYPES", "")
MAX_PRODUCT_IMAGES = 5

# -------------------- Lists --------------------

MIN_PAGE = 1
# (MAX_PAGE - 1) * MAX_LIMIT must fit a signed 64-bit BSON int
MAX_PAGE = 10**15
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MIN_LIMIT = 1
MAX_LIMIT = 100
DEFAULT_SORT = "createdAt"
DEFAULT_ORDER = "desc"

# -------------------- Business rules --------------------

BLOCK_CATEGORY_DELETE_WITH_PRODUCTS = os.getenv("BLOCK_CATEGORY_DELETE_WITH_PRODUCTS", "true").lower() == "true"
# when false, public registration always creates customers
ALLOW_REGISTER_ROLE = os.getenv("ALLOW_REGISTER_ROLE", "true").lower() == "true"


def is_production() -> bool:
    return ENVIRONMENT.lower() == "production"

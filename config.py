import os

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://127.0.0.1:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "productsDB")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))  # 7 days

CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Optimistic write attempts before giving up with a PersistenceError
CART_WRITE_RETRIES = int(os.getenv("CART_WRITE_RETRIES", 5))
STOCK_WRITE_RETRIES = int(os.getenv("STOCK_WRITE_RETRIES", 5))

PORT = int(os.getenv("PORT", 8000))

# Admin account created on startup when a password is configured
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

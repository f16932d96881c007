import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./khojpayo.db")

JWT_SECRET = os.getenv("JWT_SECRET", "your_really_long_secret_key")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 24 * 60))  # 1 day

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Cloudflare R2 (S3 compatible)
R2_BUCKET = os.getenv("R2_BUCKET")
CLOUDFLARE_ACCOUNT_ID = os.getenv("CLOUDFLARE_ACCOUNT_ID")
AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY")

ENVIRONMENT = os.getenv("ENVIRONMENT", "production")  # development exposes OTPs in responses
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

EMAIL_OTP_TTL_MINUTES = 30
MAX_UPLOAD_SIZE_MB = 5

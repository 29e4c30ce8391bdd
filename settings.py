import os
from dotenv import load_dotenv

load_dotenv()

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
DB_NAME = os.getenv("DB_NAME", "lms_assessment_db")
JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

# Judge0 compatible code execution service
JUDGE0_URL = os.getenv("JUDGE0_URL", "http://localhost:2358")
JUDGE0_API_KEY = os.getenv("JUDGE0_API_KEY")
JUDGE0_API_HOST = os.getenv("JUDGE0_API_HOST")
JUDGE_POLL_INTERVAL = float(os.getenv("JUDGE_POLL_INTERVAL", "1.0"))
JUDGE_MAX_POLLS = int(os.getenv("JUDGE_MAX_POLLS", "30"))
JUDGE_SUBMIT_RETRIES = int(os.getenv("JUDGE_SUBMIT_RETRIES", "2"))
JUDGE_REQUEST_TIMEOUT = float(os.getenv("JUDGE_REQUEST_TIMEOUT", "10"))
JUDGE_MEMORY_UNIT = os.getenv("JUDGE_MEMORY_UNIT", "KB")

# Per-actor code execution throttling
CODE_RUN_BURST = int(os.getenv("CODE_RUN_BURST", "5"))
CODE_RUN_REFILL_SECONDS = float(os.getenv("CODE_RUN_REFILL_SECONDS", "12"))

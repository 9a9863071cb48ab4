import os


def env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "meditrack")
BILLS_COLLECTION = os.getenv("BILLS_COLLECTION", "bills")

# Retries after the first attempt when a bill write hits a version conflict
LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "5"))

PATIENT_SERVICE_URL = os.getenv("PATIENT_SERVICE_URL", "http://patient-service:4100")
PATIENT_SERVICE_TOKEN = os.getenv("PATIENT_SERVICE_TOKEN")
PATIENT_SERVICE_TIMEOUT = float(os.getenv("PATIENT_SERVICE_TIMEOUT", "5.0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
JSON_LOGS = env_flag("JSON_LOGS")

PORT = int(os.getenv("PORT", "4400"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

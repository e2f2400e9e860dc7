import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "asaas-proxy")
SERVICE_DISPLAY_NAME = os.getenv("SERVICE_DISPLAY_NAME", "Gestão Asaas Backend")
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "1.0.0")

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3001"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").lower()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

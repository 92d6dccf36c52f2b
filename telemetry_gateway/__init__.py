"""Top-level package for the gameplay telemetry ingestion gateway."""

__all__ = [
    "APP_ENV",
    "SUPABASE_URL",
    "SUPABASE_KEY",
]

from dotenv import load_dotenv
import os
load_dotenv()

# Environment variables.  Only the gateway needs the token store; producers
# importing ``telemetry_gateway.producer`` run without it.
SUPABASE_URL = os.environ.get("SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_KEY")

APP_ENV = os.getenv("APP_ENV", "production")

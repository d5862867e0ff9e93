import os

from dotenv import load_dotenv

load_dotenv()


SERVER_NAME = os.getenv("SERVER_NAME", "training-program-mcp")
SERVER_VERSION = os.getenv("SERVER_VERSION", "1.0.0")
# Answer POSTs with a single JSON body instead of an SSE stream
MCP_JSON_RESPONSE = os.getenv("MCP_JSON_RESPONSE", "true").lower() in ("1", "true", "yes")

# Identity used when the Authorization header is missing or names an unknown user
DEFAULT_USER_ID = os.getenv("DEFAULT_USER_ID", "demo_user")
SESSION_HEADER = "mcp-session-id"

CATALOG_PATH = os.getenv("CATALOG_PATH", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

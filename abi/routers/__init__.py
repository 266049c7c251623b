"""
routers/ — FastAPI route modules.

Each file is a thin APIRouter. Business logic lives in services/;
routers validate input, resolve the caller, call services, and shape
the response.
"""

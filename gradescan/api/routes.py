from fastapi import APIRouter
from gradescan.api.v1 import routes
# versioned routes are mounted here, main adds the /api prefix
api_router = APIRouter()

api_router.include_router(
    routes.router,
    prefix="/v1",
    tags=["scan router"]
)

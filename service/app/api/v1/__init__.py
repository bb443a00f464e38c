from fastapi import APIRouter

from .notifications import router as notifications_router

# Don't add tags here to avoid duplication in docs
v1_router = APIRouter(
    prefix="/v1",
)


@v1_router.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    return {"message": "Welcome to the FORFEIT push API v1"}


# Don't add tags in include_router, let each router define its own tags
v1_router.include_router(notifications_router, prefix="/notifications")

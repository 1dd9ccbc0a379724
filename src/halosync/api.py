"""HTTP trigger for the sync job.

Routes:
- POST /functions/syncHaloPSACustomers  (body: ``{testOnly, fieldMapping}``)
- GET  /functions/haloPSACustomerList
- GET  /health

Errors come back as ``{error, details}`` with 400/401/500.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from halosync import __version__
from halosync.service import (
    ClientFactory,
    build_options,
    default_client_factory,
    default_store,
    run_preview,
    run_sync,
)
from halosync.store.base import RecordStore


class SyncRequest(BaseModel):
    """Optional body of the sync trigger."""

    model_config = ConfigDict(populate_by_name=True)

    test_only: bool = Field(False, alias="testOnly")
    field_mapping: Optional[dict] = Field(None, alias="fieldMapping")


def get_store() -> RecordStore:
    """Record store dependency."""
    return default_store()


def get_client_factory() -> ClientFactory:
    """Directory client factory dependency."""
    return default_client_factory


router = APIRouter(prefix="/functions", tags=["halopsa"])


@router.post("/syncHaloPSACustomers")
async def sync_halopsa_customers(
    body: Optional[dict] = Body(None),
    store: RecordStore = Depends(get_store),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Run a HaloPSA sync (or a connection test with ``testOnly``)."""
    try:
        request = SyncRequest.model_validate(body or {})
        options = build_options(request.test_only, request.field_mapping)
    except ValidationError as e:
        return JSONResponse(
            status_code=400, content={"error": "Invalid request body", "details": str(e)}
        )

    status_code, content = await run_sync(store, client_factory, options)
    return JSONResponse(status_code=status_code, content=content)


@router.get("/haloPSACustomerList")
async def halopsa_customer_list(
    store: RecordStore = Depends(get_store),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Preview how HaloPSA organizations map to local customers."""
    status_code, content = await run_preview(store, client_factory)
    return JSONResponse(status_code=status_code, content=content)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="halosync",
        version=__version__,
        description="HaloPSA directory sync into the local CRM",
    )
    app.include_router(router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


# Module-level app for uvicorn
app = create_app()

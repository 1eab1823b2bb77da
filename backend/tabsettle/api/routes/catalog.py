"""Catalog routes - read-only prices for the terminals."""

from typing import Optional

from fastapi import APIRouter, Query, Request

from tabsettle.core.errors import NotFoundError
from tabsettle.core.rate_limit import limiter
from tabsettle.core.rbac import CurrentUser
from tabsettle.core.responses import list_response
from tabsettle.db.session import DbSession
from tabsettle.schemas.catalog import BuffetPackageResponse, ServiceResponse
from tabsettle.services.catalog_service import CatalogReader

router = APIRouter()


@router.get("/packages")
@limiter.limit("120/minute")
def list_packages(request: Request, db: DbSession, current_user: CurrentUser):
    """List active buffet packages."""
    packages = CatalogReader(db).list_active_packages()
    return list_response([BuffetPackageResponse.model_validate(p) for p in packages])


@router.get("/packages/{package_id}", response_model=BuffetPackageResponse)
@limiter.limit("120/minute")
def get_package(request: Request, package_id: int, db: DbSession, current_user: CurrentUser):
    package = CatalogReader(db).get_package(package_id)
    if package is None:
        raise NotFoundError(f"Buffet package {package_id} not found")
    return package


@router.get("/services")
@limiter.limit("120/minute")
def list_services(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    category: Optional[str] = Query(None),
):
    """List active services, optionally of one category."""
    services = CatalogReader(db).list_active_services(category=category)
    return list_response([ServiceResponse.model_validate(s) for s in services])


@router.get("/services/{service_id}", response_model=ServiceResponse)
@limiter.limit("120/minute")
def get_service(request: Request, service_id: int, db: DbSession, current_user: CurrentUser):
    service = CatalogReader(db).get_service(service_id)
    if service is None:
        raise NotFoundError(f"Service {service_id} not found")
    return service

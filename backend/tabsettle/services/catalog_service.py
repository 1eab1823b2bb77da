"""Read-only access to the sellable catalog."""

from typing import List, Optional

from sqlalchemy.orm import Session

from tabsettle.models.catalog import BuffetPackage, Service


class CatalogReader:
    """Lookup of buffet packages and services.

    ``Session.get`` consults the identity map first, so repeated lookups of
    the same row inside one unit of work hit the database once.  A missing row
    is reported as ``None``; callers decide whether a snapshot can stand in.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_package(self, package_id: int) -> Optional[BuffetPackage]:
        return self.db.get(BuffetPackage, package_id)

    def get_service(self, service_id: int) -> Optional[Service]:
        return self.db.get(Service, service_id)

    def list_active_packages(self) -> List[BuffetPackage]:
        return (
            self.db.query(BuffetPackage)
            .filter(BuffetPackage.is_active.is_(True))
            .order_by(BuffetPackage.price, BuffetPackage.id)
            .all()
        )

    def list_active_services(self, category: Optional[str] = None) -> List[Service]:
        query = self.db.query(Service).filter(Service.is_active.is_(True))
        if category:
            query = query.filter(Service.category == category)
        return query.order_by(Service.category, Service.name).all()

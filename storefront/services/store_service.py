import logging

from storefront.errors import NotFound, ValidationFailure
from storefront.extensions import db
from storefront.models import Store

logger = logging.getLogger(__name__)

STORE_LIMIT_MESSAGE = "Store limit reached for your subscription plan"

# Accepted JSON types per editable field; None is allowed where the column is nullable
FIELD_TYPES = {
    "name": (str,),
    "description": (str, type(None)),
    "category": (str,),
    "status": (str,),
    "settings": (dict, type(None)),
}


def _check_types(data):
    for field, types in FIELD_TYPES.items():
        if field in data and not isinstance(data[field], types):
            raise ValidationFailure(f"Store {field} has an invalid type")


class StoreService:
    """Store CRUD scoped to one owner. Creation goes through the feature gate."""

    def __init__(self, gate, session=None):
        self.gate = gate
        self.session = session or db.session

    def _query(self, owner_id):
        return self.session.query(Store).filter_by(owner_id=owner_id)

    def count_stores(self, owner_id):
        return self._query(owner_id).count()

    def list_stores(self, owner_id):
        return self._query(owner_id).order_by(Store.created_at.desc()).all()

    def get_store(self, owner_id, store_id):
        store = self._query(owner_id).filter_by(id=store_id).first()
        if store is None:
            raise NotFound("Store not found")
        return store

    def create_store(self, owner_id, data):
        data = {field: value for field, value in data.items() if value is not None}
        _check_types(data)
        name = (data.get("name") or "").strip()
        category = (data.get("category") or "").strip()
        if not name:
            raise ValidationFailure("Store name is required")
        if not category:
            raise ValidationFailure("Store category is required")

        self.gate.enforce(owner_id, "stores", self.count_stores(owner_id) + 1, message=STORE_LIMIT_MESSAGE)

        store = Store(
            owner_id=owner_id,
            name=name,
            description=data.get("description"),
            category=category,
            status=data.get("status") or "active",
            settings=data.get("settings"),
        )
        self.session.add(store)
        self.session.commit()

        logger.info("Store created", extra={"user_id": owner_id, "store_id": store.id})
        return store

    def update_store(self, owner_id, store_id, data):
        _check_types(data)
        store = self.get_store(owner_id, store_id)
        for field in Store.EDITABLE_FIELDS:
            if field in data:
                setattr(store, field, data[field])
        if not store.name or not store.category:
            self.session.rollback()
            raise ValidationFailure("Store name and category cannot be empty")
        self.session.commit()

        logger.info("Store updated", extra={"user_id": owner_id, "store_id": store_id})
        return store

    def delete_store(self, owner_id, store_id):
        store = self.get_store(owner_id, store_id)
        self.session.delete(store)
        self.session.commit()
        logger.info("Store deleted", extra={"user_id": owner_id, "store_id": store_id})

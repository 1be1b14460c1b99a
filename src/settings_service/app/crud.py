# app/crud.py
from sqlalchemy.orm import Query, Session

from . import models
from .schemas import PageRequest, SortDirection

SERVICE_SORT_COLUMNS = {
    "id": models.Service.id,
    "name": models.Service.normalized_name,
    "created_at": models.Service.created_at,
}

SETTING_SORT_COLUMNS = {
    "id": models.Setting.id,
    "name": models.Setting.name,
    "last_used_at": models.Setting.last_used_at,
}


def normalize_name(name: str) -> str:
    return name.strip().lower()


def get_service(db: Session, service_id: int, for_update: bool = False) -> models.Service | None:
    """Fetches a service by id."""
    query = db.query(models.Service).filter(models.Service.id == service_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_service_by_name(db: Session, name: str, for_update: bool = False) -> models.Service | None:
    """Fetches a service by its unique name, ignoring case and surrounding whitespace."""
    query = db.query(models.Service).filter(models.Service.normalized_name == normalize_name(name))
    if for_update:
        query = query.with_for_update()
    return query.first()


def _ordered(query: Query, columns: dict, page: PageRequest) -> Query:
    column = columns[page.sort]
    order = column.desc() if page.direction == SortDirection.desc else column.asc()
    # id as tie-breaker keeps page boundaries stable
    return query.order_by(order, columns["id"].asc())


def get_services(db: Session, page: PageRequest) -> tuple[list[models.Service], int]:
    """Fetches one page of services along with the total count."""
    query = db.query(models.Service)
    total = query.count()
    rows = _ordered(query, SERVICE_SORT_COLUMNS, page).offset(page.offset).limit(page.size).all()
    return rows, total


def create_service(db: Session, name: str, password_hash: str, role: models.Role, created_at: int) -> models.Service:
    """Creates a new service entry; the id is assigned on flush."""
    db_service = models.Service(
        name=name.strip(),
        normalized_name=normalize_name(name),
        password_hash=password_hash,
        role=role,
        created_at=created_at,
    )
    db.add(db_service)
    db.flush()
    return db_service


def get_setting(db: Session, owner_id: int, name: str) -> models.Setting | None:
    """Fetches a setting by its name within one owner's namespace."""
    return (
        db.query(models.Setting)
        .filter(models.Setting.owner_id == owner_id, models.Setting.name == name)
        .first()
    )


def get_settings_for_owner(db: Session, owner_id: int, page: PageRequest) -> tuple[list[models.Setting], int]:
    """Fetches one page of an owner's settings along with the total count."""
    query = db.query(models.Setting).filter(models.Setting.owner_id == owner_id)
    total = query.count()
    rows = _ordered(query, SETTING_SORT_COLUMNS, page).offset(page.offset).limit(page.size).all()
    return rows, total


def create_setting(db: Session, owner_id: int, name: str, value: str) -> models.Setting:
    db_setting = models.Setting(owner_id=owner_id, name=name, value=value)
    db.add(db_setting)
    db.flush()
    return db_setting


def delete_setting(db: Session, owner_id: int, name: str) -> int:
    """Deletes a setting, returning the number of rows removed."""
    return (
        db.query(models.Setting)
        .filter(models.Setting.owner_id == owner_id, models.Setting.name == name)
        .delete(synchronize_session=False)
    )

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from . import models, schemas
from .auth import create_access_token, hash_password, verify_password
from .errors import AuthError, ConflictError, NotFoundError, StoreError, ValidationError
from .images import ImageStore, ImageUpload
from .log import logger
from .utils import LIKE_ESCAPE, escape_like

# Same message for "no such user" and "wrong password": never reveal which check failed
LOGIN_FAILED = "Invalid credentials"


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("Database error", error=str(e)) from e


# -------------------- Users --------------------

def get_user_by_email(db: Session, email: str) -> models.User | None:
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()


def _insert_user(db: Session, data: schemas.UserRegister, role: str) -> models.User:
    if get_user_by_email(db, data.email):
        raise ConflictError("Email already in use")
    user = models.User(
        name=data.name,
        email=data.email,
        phone=data.phone,
        zipcode=data.zipcode,
        password_hash=hash_password(data.password),
        role=role,
    )
    db.add(user)
    try:
        _commit(db)
    except IntegrityError as e:
        # lost a race against a concurrent registration of the same email
        raise ConflictError("Email already in use") from e
    db.refresh(user)
    return user


def register(db: Session, data: schemas.UserRegister) -> Tuple[models.User, str]:
    user = _insert_user(db, data, role="user")
    logger.info("registered user id=%s", user.id)
    return user, create_access_token(user.id, user.role)


def login(db: Session, data: schemas.UserLogin) -> Tuple[models.User, str]:
    user = (
        db.query(models.User)
        .filter(models.User.email == data.email, models.User.is_active.is_(True))
        .first()
    )
    if not user or not verify_password(data.password, user.password_hash):
        raise AuthError(LOGIN_FAILED)
    return user, create_access_token(user.id, user.role)


def create_admin(db: Session, data: schemas.UserRegister) -> Tuple[models.User, bool]:
    """Create an admin account; returns ``(user, created)`` and is a no-op for a known email."""
    existing = get_user_by_email(db, data.email)
    if existing:
        return existing, False
    user = _insert_user(db, data, role="admin")
    logger.info("created admin user id=%s", user.id)
    return user, True


# -------------------- Products --------------------

def _parse_id(product_id) -> Optional[int]:
    if isinstance(product_id, int):
        return product_id
    text = str(product_id).strip()
    return int(text) if text.isascii() and text.isdigit() else None


def _active_products(db: Session):
    return (
        db.query(models.Product)
        .options(selectinload(models.Product.images))
        .filter(models.Product.is_active.is_(True))
    )


def _paginate(query, page: int, limit: int) -> schemas.Page:
    total = query.order_by(None).count()
    offset = (page - 1) * limit
    items = []
    # a page past the end never reaches the store, however large the numbers
    if offset < total:
        items = (
            query.order_by(models.Product.created_at.desc(), models.Product.id.desc())
            .offset(offset)
            .limit(min(limit, total - offset))
            .all()
        )
    return schemas.Page(items=items, total=total, page=page, limit=limit)


def list_products(db: Session, page: int = 1, limit: int = 12) -> schemas.Page:
    return _paginate(_active_products(db), page, limit)


def search_products(db: Session, query: str, page: int = 1, limit: int = 12) -> schemas.Page:
    # literal, case-insensitive substring match; wildcards in the input are escaped
    pattern = f"%{escape_like(query)}%"
    matches = _active_products(db).filter(
        or_(
            models.Product.name.ilike(pattern, escape=LIKE_ESCAPE),
            models.Product.description.ilike(pattern, escape=LIKE_ESCAPE),
            models.Product.category.ilike(pattern, escape=LIKE_ESCAPE),
        )
    )
    return _paginate(matches, page, limit)


def get_product(db: Session, product_id) -> models.Product:
    """Active product by id; inactive (soft-deleted) products count as missing."""
    pid = _parse_id(product_id)
    product = None
    if pid is not None:
        product = _active_products(db).filter(models.Product.id == pid).first()
    if not product:
        raise NotFoundError("Product not found")
    return product


def _store_images(store: ImageStore, uploads: List[ImageUpload]) -> List[models.ProductImage]:
    images: List[models.ProductImage] = []
    try:
        for up in uploads:
            images.append(store.store(up))
    except OSError as e:
        store.discard(images)
        raise StoreError("Could not store image", error=str(e)) from e
    return images


def _commit_with_images(db: Session, store: Optional[ImageStore], images: List[models.ProductImage]) -> None:
    # a failed write must not leave uploaded files behind
    try:
        _commit(db)
    except IntegrityError as e:
        if images:
            store.discard(images)
        raise StoreError("Database error", error=str(e)) from e
    except StoreError:
        if images:
            store.discard(images)
        raise


def create_product(
    db: Session,
    fields: schemas.ProductCreate,
    uploads: List[ImageUpload],
    store: ImageStore,
) -> models.Product:
    if not uploads:
        raise ValidationError("At least one image is required")
    uploads = store.validate(uploads)

    images = _store_images(store, uploads)
    product = models.Product(**fields.model_dump(), images=images)
    db.add(product)
    _commit_with_images(db, store, images)
    db.refresh(product)
    logger.info("created product id=%s images=%d", product.id, len(images))
    return product


def update_product(
    db: Session,
    product_id,
    fields: schemas.ProductUpdate,
    uploads: Optional[List[ImageUpload]] = None,
    store: Optional[ImageStore] = None,
) -> models.Product:
    product = get_product(db, product_id)
    uploads = uploads or []
    if uploads:
        if store is None:
            raise ValueError("an ImageStore is required to append images")
        uploads = store.validate(uploads)

    for name, value in fields.model_dump(exclude_none=True).items():
        setattr(product, name, value)
    product.updated_at = datetime.now(timezone.utc)

    # new images are appended as new rows, existing rows are never rewritten
    images = _store_images(store, uploads) if uploads else []
    for image in images:
        image.product_id = product.id
        db.add(image)
    _commit_with_images(db, store, images)
    db.refresh(product)
    logger.info("updated product id=%s appended_images=%d", product.id, len(images))
    return product


def soft_delete_product(db: Session, product_id) -> None:
    pid = _parse_id(product_id)
    changed = 0
    if pid is not None:
        changed = (
            db.query(models.Product)
            .filter(models.Product.id == pid, models.Product.is_active.is_(True))
            .update(
                {"is_active": False, "updated_at": datetime.now(timezone.utc)},
                synchronize_session=False,
            )
        )
    if not changed:
        db.rollback()
        raise NotFoundError("Product not found")
    _commit(db)
    logger.info("soft-deleted product id=%s", pid)

import csv
import io
import json
import logging
import math
import random

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .dependencies import get_db, require_admin
from .errors import NotFound, StoreError, ValidationFailed
from .models import Product, User
from .store_schema import ProductBulkRequest, ProductCreate, ProductOut, ProductUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


def _get_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product")
    return product


# ---------- BULK IMPORT ----------
PRODUCT_COLUMNS = {"name", "brand", "image_url", "quantity", "rate"}
IMAGE_ALIASES = ("imageUrl", "image", "imageurl", "image-url")
REPORT_LIMIT = 20

SAMPLE_NAMES = [
    "Ultra SSD", "Pro RAM", "CCTV Camera", "Gaming Mouse", "Mechanical Keyboard",
    "Wireless Headset", "Power Adapter", "HDMI Cable", "Motherboard", "Graphics Card",
]
SAMPLE_BRANDS = ["BrandA", "BrandB", "Kingstone", "CP PLUSE", "Acme", "GenericCo", "TechCorp"]


def normalize_row(row: dict) -> tuple[dict, list]:
    """Map image column variants to ``image_url``, trim strings, blank to None."""
    row = dict(row)
    if "image_url" not in row:
        for alias in IMAGE_ALIASES:
            if alias in row:
                row["image_url"] = row.pop(alias)
                break

    ignored = sorted(str(key) for key in row if key not in PRODUCT_COLUMNS)
    clean = {}
    for key in PRODUCT_COLUMNS & row.keys():
        value = row[key]
        if isinstance(value, str):
            value = value.strip() or None
        clean[key] = value
    return clean, ignored


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"])
    return f"{location}: {error['msg']}" if location else error["msg"]


def import_rows(db: Session, rows: list) -> dict:
    """
    Validate and insert product rows.

    Invalid rows are skipped and reported in ``errors`` with their index;
    unknown columns are reported in ``warnings``. Valid rows are committed
    together.
    """
    created = []
    warnings = []
    errors = []

    for index, raw in enumerate(rows):
        if not isinstance(raw, dict):
            errors.append({"index": index, "row": raw, "reason": "Row must be an object"})
            continue

        row, ignored = normalize_row(raw)
        try:
            data = ProductCreate.model_validate(row)
        except ValidationError as exc:
            errors.append({"index": index, "row": row, "reason": _first_error(exc)})
            continue

        if ignored:
            warnings.append({"index": index, "warning": f"Ignored columns: {', '.join(ignored)}"})

        product = Product(**data.model_dump())
        db.add(product)
        created.append(product)

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Product import of %d rows failed", len(rows))
        raise StoreError("Failed to import products")

    for product in created:
        db.refresh(product)

    logger.info(
        "Imported %d of %d product rows (%d warnings, %d errors)",
        len(created), len(rows), len(warnings), len(errors),
    )
    return {"created": created, "warnings": warnings, "errors": errors}


def generate_sample_rows(count: int) -> list:
    """Random catalog rows for seeding a development database."""
    return [
        {
            "name": f"{SAMPLE_NAMES[i % len(SAMPLE_NAMES)]} {random.randint(0, 9999)}",
            "brand": random.choice(SAMPLE_BRANDS),
            "quantity": random.randint(1, 100),
            "rate": f"{random.uniform(50, 5050):.2f}",
        }
        for i in range(count)
    ]


def parse_import_body(content_type: str, body: bytes) -> list:
    """Rows from a JSON array, a ``{"products": [...]}`` object or a CSV file."""
    try:
        text = body.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationFailed("Import file must be UTF-8 encoded")

    if "application/json" in content_type:
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            raise ValidationFailed("Invalid JSON file")
        if isinstance(parsed, dict):
            parsed = parsed.get("products")
        if not isinstance(parsed, list):
            raise ValidationFailed("JSON must be an array or { products: [...] }")
        rows = parsed
    elif "text/csv" in content_type:
        reader = csv.DictReader(io.StringIO(text), restkey="extra")
        if reader.fieldnames:
            reader.fieldnames = [name.strip().lower() for name in reader.fieldnames]
        rows = [
            row for row in reader
            if any(isinstance(value, str) and value.strip() for value in row.values())
        ]
    else:
        raise ValidationFailed("Send application/json or text/csv")

    if not rows:
        raise ValidationFailed("No products provided")
    return rows


def _import_report(result: dict) -> dict:
    return {
        "createdCount": len(result["created"]),
        "sample": [ProductOut.model_validate(p) for p in result["created"][:REPORT_LIMIT]],
        "warnings": result["warnings"][:REPORT_LIMIT],
        "errors": result["errors"][:REPORT_LIMIT],
        "summary": {
            "warningsCount": len(result["warnings"]),
            "errorsCount": len(result["errors"]),
        },
    }


# ---------- PRODUCT ----------
@router.get("")
def read_products(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    search: str | None = None,
    db: Session = Depends(get_db),
):
    query = db.query(Product)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.brand.ilike(pattern)))

    total_count = query.count()
    products = (
        query.order_by(Product.created_at.desc(), Product.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "success": True,
        "message": "Products fetched successfully",
        "data": {
            "products": [ProductOut.model_validate(p) for p in products],
            "pagination": {
                "currentPage": page,
                "totalPages": math.ceil(total_count / limit),
                "totalCount": total_count,
                "limit": limit,
            },
        },
    }


@router.get("/{product_id}")
def read_product(product_id: int, db: Session = Depends(get_db)):
    return {
        "success": True,
        "message": "Product fetched successfully",
        "data": ProductOut.model_validate(_get_product(db, product_id)),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    product: ProductCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    db_product = Product(**product.model_dump())

    db.add(db_product)
    db.commit()
    db.refresh(db_product)

    logger.info("Product %s created by %s", db_product.id, admin.email)
    return {
        "success": True,
        "message": "Product created successfully",
        "data": ProductOut.model_validate(db_product),
    }


@router.post("/bulk", status_code=status.HTTP_201_CREATED)
def bulk_create_products(
    data: ProductBulkRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    rows = data.products or generate_sample_rows(data.count)
    result = import_rows(db, rows)
    return {
        "success": True,
        "message": f"{len(result['created'])} products created",
        "data": _import_report(result),
    }


@router.post("/import", status_code=status.HTTP_201_CREATED)
async def import_products(
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Raw upload: the body is the JSON or CSV file itself."""
    rows = parse_import_body(request.headers.get("content-type", ""), await request.body())
    result = await run_in_threadpool(import_rows, db, rows)
    return {
        "success": True,
        "message": f"{len(result['created'])} products imported",
        "data": _import_report(result),
    }


@router.put("/{product_id}")
def update_product(
    product_id: int,
    product: ProductUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    db_product = _get_product(db, product_id)

    for key, value in product.model_dump(exclude_unset=True).items():
        setattr(db_product, key, value)

    db.commit()
    db.refresh(db_product)
    return {
        "success": True,
        "message": "Product updated successfully",
        "data": ProductOut.model_validate(db_product),
    }


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    product = _get_product(db, product_id)

    # cart lines and order items go with it
    db.delete(product)
    db.commit()

    logger.info("Product %s deleted by %s", product_id, admin.email)
    return {"success": True, "message": "Product deleted successfully", "data": None}

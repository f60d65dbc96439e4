# Overview: Asynchronous bulk product import; row preparation, image diffing, bulk writes and delete-missing.

"""
Batch Import Engine

A submission creates a job in the registry and returns at once; run_import
does the work on a background thread with its own application context.

Phases:
1. Prefetch (job thread): categories, existing targets by id then sku, their
   images, order references and reserved SKUs. Everything a worker needs is
   copied into plain values so workers never touch the database.
2. Prepare (worker pool, P1): normalize and validate each row, diff images,
   upload new external images under a per-job semaphore (P2). Progress 0-85.
3. Write (job thread): insert new products (87), link franchises, update
   changed products (89), reconcile image rows (90), then remove store objects
   that nothing references any more.
4. Delete-missing (optional): soft-delete live products absent from the
   import and unreferenced by orders, with store deletes bounded by P3. 90-100.

Row errors are recorded on the job and never fail it. Only database failures
during the write phases mark the job failed.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Category, Franchise, FranchiseProduct, Product, ProductImage, Subcategory
from ..time_utils import utcnow
from ..validation import ValidationError
from . import catalog_service
from .background import run_in_background
from .import_schemas import (
    CONTENT_FIELDS,
    ProductRow,
    diff_images,
    identify_row,
    normalize_row,
)
from .job_registry import COMPLETED, FAILED, BatchJob, JobRegistry, get_registry
from .storage_service import StorageError, get_storage


logger = logging.getLogger(__name__)

MAX_ROWS = 5000
INSERT_BATCH = 100
DELETE_BATCH = 50

PREPARE_PROGRESS = 85
INSERT_PROGRESS = 87
UPDATE_PROGRESS = 89
IMAGE_PROGRESS = 90

DELETED_BY = "batch-import"


def validate_envelope(payload: Any) -> tuple[list[dict], bool]:
    """Shape checks done before a job exists. Row content is validated per row later."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    rows = payload.get("products")
    if not isinstance(rows, list) or not rows:
        raise ValidationError("products must be a non-empty list")
    if len(rows) > MAX_ROWS:
        raise ValidationError(f"products must contain at most {MAX_ROWS} items")
    if not all(isinstance(r, dict) for r in rows):
        raise ValidationError("each product must be an object")
    delete_missing = payload.get("delete_missing", False)
    if not isinstance(delete_missing, bool):
        raise ValidationError("delete_missing must be a boolean")
    return rows, delete_missing


def submit_import(rows: list[dict], *, delete_missing: bool = False) -> BatchJob:
    job = get_registry().create(len(rows), delete_missing=delete_missing)
    app = current_app._get_current_object()
    run_in_background(app, run_import, job.id, rows, delete_missing, name=f"import-{job.id[:8]}")
    logger.info("Queued import job %s with %d rows (delete_missing=%s)", job.id, len(rows), delete_missing)
    return job


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass
class TargetSnapshot:
    id: uuid.UUID
    sku: str
    values: dict[str, Any]
    image_urls: list[str]


@dataclass
class ImportContext:
    job_id: str
    registry: JobRegistry
    storage: Any
    delete_missing: bool
    workers: int
    delete_concurrency: int
    upload_slots: threading.BoundedSemaphore
    category_ids: set = field(default_factory=set)
    subcategory_parents: dict = field(default_factory=dict)
    targets: dict[int, TargetSnapshot] = field(default_factory=dict)
    reserved_skus: dict[int, str] = field(default_factory=dict)
    sku_owners: dict[str, uuid.UUID] = field(default_factory=dict)
    barcode_owners: dict[str, uuid.UUID] = field(default_factory=dict)
    non_nullable: frozenset = frozenset()


@dataclass
class PreparedRow:
    row: ProductRow
    product_id: uuid.UUID | None = None
    is_new: bool = True
    values: dict[str, Any] = field(default_factory=dict)
    fields_changed: bool = False
    # final ordered image urls; None leaves images untouched
    images: list[str] | None = None
    images_changed: bool = False
    removed_images: list[str] = field(default_factory=list)
    uploaded: list[str] = field(default_factory=list)
    image_errors: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.row.errors)

    @property
    def skipped(self) -> bool:
        return self.row.delete and not self.row.errors


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run_import(job_id: str, rows: list[dict], delete_missing: bool = False) -> None:
    """Run one job to completion. Requires an application context."""
    registry = get_registry()
    cfg = current_app.config
    ctx = ImportContext(
        job_id=job_id,
        registry=registry,
        storage=get_storage(),
        delete_missing=delete_missing,
        workers=max(1, int(cfg.get("IMPORT_WORKERS", 5))),
        delete_concurrency=max(1, int(cfg.get("DELETE_CONCURRENCY", 5))),
        upload_slots=threading.BoundedSemaphore(max(1, int(cfg.get("IMAGE_UPLOAD_CONCURRENCY", 3)))),
    )
    registry.set_processing(job_id)

    try:
        identified = [identify_row(i, raw) for i, raw in enumerate(rows)]
        _prefetch(ctx, identified)
        prepared = _prepare_all(ctx, identified, rows)
        _claim_unique_values(ctx, prepared)
        _write(ctx, prepared)
        if delete_missing:
            _delete_missing(ctx, prepared)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Import job %s failed during a database write", job_id)
        registry.complete(job_id, FAILED, "Database error while writing products")
        return
    except Exception:
        db.session.rollback()
        logger.exception("Import job %s failed", job_id)
        registry.complete(job_id, FAILED, "Import failed")
        return

    registry.complete(job_id, COMPLETED)
    job = registry.get(job_id)
    logger.info(
        "Import job %s completed: created=%d updated=%d deleted=%d failed=%d",
        job_id, job.created, job.updated, job.deleted, job.failed,
    )


# ---------------------------------------------------------------------------
# Phase 1: prefetch
# ---------------------------------------------------------------------------

def _snapshot(product: Product, image_urls: list[str]) -> TargetSnapshot:
    return TargetSnapshot(
        id=product.id,
        sku=product.sku,
        values={name: getattr(product, name) for name in CONTENT_FIELDS},
        image_urls=image_urls,
    )


def _prefetch(ctx: ImportContext, identified: list[ProductRow]) -> None:
    ctx.category_ids = {
        cid for (cid,) in db.session.query(Category.id).filter(Category.deleted_at.is_(None)).all()
    }
    ctx.subcategory_parents = {
        sid: cid
        for sid, cid in db.session.query(Subcategory.id, Subcategory.category_id)
        .filter(Subcategory.deleted_at.is_(None))
        .all()
    }
    ctx.non_nullable = frozenset(
        col.key for col in Product.__table__.columns if not col.nullable
    )

    active = [r for r in identified if not r.delete and not r.errors]
    ids = list({r.product_id for r in active if r.product_id is not None})
    skus = list({r.sku for r in active if r.sku})

    by_id: dict = {}
    for chunk in catalog_service.chunked(ids):
        for product in db.session.query(Product).filter(Product.id.in_(chunk), Product.deleted_at.is_(None)).all():
            by_id[product.id] = product

    # sku owners include soft-deleted rows; the unique index covers them
    by_sku: dict = {}
    for chunk in catalog_service.chunked(skus):
        for product in db.session.query(Product).filter(Product.sku.in_(chunk)).all():
            ctx.sku_owners[product.sku] = product.id
            if product.deleted_at is None:
                by_sku[product.sku] = product

    resolved: dict[int, Product] = {}
    for row in active:
        product = by_id.get(row.product_id) if row.product_id is not None else None
        if product is None and row.sku:
            product = by_sku.get(row.sku)
        if product is not None:
            resolved[row.index] = product

    images = catalog_service.images_for_products(list({p.id for p in resolved.values()}))
    for index, product in resolved.items():
        ctx.targets[index] = _snapshot(product, [img.image_url for img in images.get(product.id, [])])
        ctx.sku_owners.setdefault(product.sku, product.id)

    barcodes = list({r.barcode for r in active if r.barcode})
    for chunk in catalog_service.chunked(barcodes):
        for pid, barcode in db.session.query(Product.id, Product.barcode).filter(Product.barcode.in_(chunk)).all():
            ctx.barcode_owners[barcode] = pid

    needs_sku = [r for r in active if not r.sku and r.index not in ctx.targets]
    if needs_sku:
        # nothing is pending in the session; the sequence commits on its own connection
        db.session.commit()
        for row, sku in zip(needs_sku, catalog_service.reserve_skus(len(needs_sku))):
            ctx.reserved_skus[row.index] = sku


# ---------------------------------------------------------------------------
# Phase 2: prepare (worker threads, no database access)
# ---------------------------------------------------------------------------

def _resolve_images(ctx: ImportContext, prep: PreparedRow, existing: list[str]) -> None:
    row = prep.row
    diff = diff_images(existing, row.image_urls)
    keep = set(diff.keep)

    stored: dict[str, str] = {}
    for url in diff.to_add:
        if ctx.storage.is_managed_url(url):
            stored[url] = url
            continue
        with ctx.upload_slots:
            try:
                stored[url] = ctx.storage.download_and_upload(url, prep.product_id)
            except StorageError as exc:
                logger.warning("Row %d: image %s not imported: %s", row.row_number, url, exc)
                prep.image_errors.append(f"{url}: {exc}")
                continue
        prep.uploaded.append(stored[url])

    final = []
    for url in row.image_urls:
        if url in keep:
            final.append(url)
        elif url in stored:
            final.append(stored[url])

    prep.images = final
    prep.removed_images = diff.to_delete
    prep.images_changed = final != existing


def _prepare_row(ctx: ImportContext, row: ProductRow, raw: dict) -> PreparedRow:
    prep = PreparedRow(row=row)
    if row.errors or row.delete:
        return prep

    normalize_row(row, raw)
    values = row.values

    category_id = values.get("category_id")
    if category_id is not None and "category_id" not in row.errors and category_id not in ctx.category_ids:
        row.errors["category_id"] = "category_not_found"
    subcategory_id = values.get("subcategory_id")
    if subcategory_id is not None:
        parent = ctx.subcategory_parents.get(subcategory_id)
        if parent is None or parent != category_id:
            row.errors["subcategory_id"] = "subcategory_not_found"
    if row.errors:
        return prep

    target = ctx.targets.get(row.index)
    if not values.get("sku"):
        values["sku"] = target.sku if target else ctx.reserved_skus[row.index]

    # blank values never clear non-nullable columns
    for name in [k for k, v in values.items() if v is None and k in ctx.non_nullable]:
        del values[name]

    prep.values = values
    if target is not None:
        prep.is_new = False
        prep.product_id = target.id
        prep.fields_changed = any(target.values.get(k) != v for k, v in values.items())
    else:
        prep.product_id = uuid.uuid4()

    if row.images_provided:
        _resolve_images(ctx, prep, target.image_urls if target else [])
    return prep


def _safe_prepare(ctx: ImportContext, row: ProductRow, raw: dict) -> PreparedRow:
    try:
        return _prepare_row(ctx, row, raw)
    except Exception:
        logger.exception("Import job %s: unexpected error preparing row %d", ctx.job_id, row.row_number)
        row.errors["row"] = "unexpected error while preparing row"
        return PreparedRow(row=row)


def _prepare_all(ctx: ImportContext, identified: list[ProductRow], rows: list[dict]) -> list[PreparedRow]:
    total = len(identified)
    results: list[PreparedRow | None] = [None] * total
    done = 0

    with ThreadPoolExecutor(max_workers=ctx.workers, thread_name_prefix=f"import-{ctx.job_id[:8]}") as pool:
        futures = {
            pool.submit(_safe_prepare, ctx, row, rows[row.index]): row.index
            for row in identified
        }
        for future in as_completed(futures):
            prep = future.result()
            results[futures[future]] = prep
            done += 1
            ctx.registry.add_processed(ctx.job_id)
            ctx.registry.set_progress(ctx.job_id, PREPARE_PROGRESS * done // total)

    for prep in results:
        row = prep.row
        for note in row.warnings:
            logger.info("Row %d: %s", row.row_number, note)
            ctx.registry.add_warning(ctx.job_id, row.row_number, row.item_name, note)
        for note in prep.image_errors:
            ctx.registry.add_warning(ctx.job_id, row.row_number, row.item_name, f"image not imported: {note}")
        if prep.skipped:
            logger.info("Row %d: marked for deletion, skipped", row.row_number)
        elif prep.failed:
            ctx.registry.add_error(ctx.job_id, row.row_number, row.item_name, row.errors)
    return results


def _claim_unique_values(ctx: ImportContext, prepared: list[PreparedRow]) -> None:
    """Reject rows whose sku, barcode or target collides with another row or product, first row wins."""
    sku_claims: dict[str, uuid.UUID] = {}
    barcode_claims: dict[str, uuid.UUID] = {}
    target_claims: set = set()

    for prep in prepared:
        if prep.failed or prep.skipped:
            continue
        row = prep.row
        pid = prep.product_id
        errors: dict[str, str] = {}

        sku = prep.values.get("sku")
        owner = ctx.sku_owners.get(sku)
        if owner is not None and owner != pid:
            errors["sku"] = "already in use by another product"
        elif sku in sku_claims and sku_claims[sku] != pid:
            errors["sku"] = "duplicate sku in import"

        barcode = prep.values.get("barcode")
        if barcode:
            owner = ctx.barcode_owners.get(barcode)
            if owner is not None and owner != pid:
                errors["barcode"] = "already in use by another product"
            elif barcode in barcode_claims and barcode_claims[barcode] != pid:
                errors["barcode"] = "duplicate barcode in import"

        if not prep.is_new and pid in target_claims:
            errors["id"] = "product appears more than once in import"

        if errors:
            row.errors.update(errors)
            ctx.registry.add_error(ctx.job_id, row.row_number, row.item_name, row.errors)
            continue

        sku_claims[sku] = pid
        if barcode:
            barcode_claims[barcode] = pid
        target_claims.add(pid)


# ---------------------------------------------------------------------------
# Phase 3: bulk writes (job thread)
# ---------------------------------------------------------------------------

def _insert_products(ctx: ImportContext, new_rows: list[PreparedRow]) -> None:
    for batch in catalog_service.chunked(new_rows, INSERT_BATCH):
        db.session.add_all([Product(id=prep.product_id, **prep.values) for prep in batch])
        db.session.flush()
    db.session.commit()
    if new_rows:
        ctx.registry.add_created(ctx.job_id, len(new_rows))
        logger.info("Import job %s: created %d products", ctx.job_id, len(new_rows))


def _link_franchises(ctx: ImportContext, rows: list[PreparedRow]) -> None:
    """Create missing FranchiseProduct rows; existing links are left as they are."""
    wanted: list[tuple[uuid.UUID, PreparedRow]] = []
    for prep in rows:
        for raw_id in prep.row.franchise_ids:
            try:
                wanted.append((uuid.UUID(raw_id), prep))
            except ValueError:
                logger.warning("Row %d: invalid franchise id %s", prep.row.row_number, raw_id)
                ctx.registry.add_warning(ctx.job_id, prep.row.row_number, prep.row.item_name, f"invalid franchise id {raw_id}")
    if not wanted:
        return

    franchise_ids = list({fid for fid, _ in wanted})
    known = {
        fid for (fid,) in db.session.query(Franchise.id)
        .filter(Franchise.id.in_(franchise_ids), Franchise.deleted_at.is_(None))
        .all()
    }
    product_ids = list({prep.product_id for _, prep in wanted})
    existing = set()
    for chunk in catalog_service.chunked(product_ids):
        existing.update(
            db.session.query(FranchiseProduct.franchise_id, FranchiseProduct.product_id)
            .filter(FranchiseProduct.product_id.in_(chunk))
            .all()
        )

    links = []
    for fid, prep in wanted:
        if fid not in known:
            ctx.registry.add_warning(ctx.job_id, prep.row.row_number, prep.row.item_name, f"unknown franchise {fid}")
            continue
        if (fid, prep.product_id) in existing:
            continue
        existing.add((fid, prep.product_id))
        values = prep.values
        links.append(FranchiseProduct(
            franchise_id=fid,
            product_id=prep.product_id,
            stock_quantity=values.get("stock_quantity") or 0,
            reorder_level=values["reorder_level"] if values.get("reorder_level") is not None else 5,
            is_available=values.get("status", "active") == "active",
        ))

    for batch in catalog_service.chunked(links, INSERT_BATCH):
        db.session.add_all(batch)
        db.session.flush()
    db.session.commit()
    if links:
        logger.info("Import job %s: linked %d franchise products", ctx.job_id, len(links))


def _update_products(ctx: ImportContext, update_rows: list[PreparedRow]) -> None:
    changed = [p for p in update_rows if p.fields_changed]
    products: dict = {}
    for chunk in catalog_service.chunked([p.product_id for p in changed]):
        for product in db.session.query(Product).filter(Product.id.in_(chunk)).all():
            products[product.id] = product

    for prep in changed:
        product = products[prep.product_id]
        for name, value in prep.values.items():
            setattr(product, name, value)
    db.session.commit()

    updated = sum(1 for p in update_rows if p.fields_changed or p.images_changed)
    if updated:
        ctx.registry.add_updated(ctx.job_id, updated)
        logger.info("Import job %s: updated %d products", ctx.job_id, updated)


def _write_images(image_rows: list[PreparedRow]) -> None:
    """Make each product's live image rows equal its final list; index 0 is primary."""
    changed = [p for p in image_rows if p.images_changed]
    live = catalog_service.images_for_products([p.product_id for p in changed])
    now = utcnow()

    for prep in changed:
        by_url = {img.image_url: img for img in live.get(prep.product_id, [])}
        for position, url in enumerate(prep.images):
            img = by_url.pop(url, None)
            if img is None:
                db.session.add(ProductImage(
                    product_id=prep.product_id,
                    image_url=url,
                    is_primary=position == 0,
                    position=position,
                ))
            else:
                img.position = position
                img.is_primary = position == 0
        for img in by_url.values():
            img.deleted_at = now
    db.session.commit()


def _remove_unreferenced_objects(ctx: ImportContext, urls: list[str]) -> None:
    """Delete store objects no live image row and no order line points at."""
    urls = [u for u in set(urls) if u and ctx.storage.is_managed_url(u)]
    if not urls:
        return

    referenced = catalog_service.image_order_counts(urls)
    still_live = set()
    for chunk in catalog_service.chunked(urls):
        still_live.update(
            url for (url,) in db.session.query(ProductImage.image_url)
            .filter(ProductImage.image_url.in_(chunk), ProductImage.deleted_at.is_(None))
            .all()
        )

    removable = []
    for url in sorted(urls):
        if referenced.get(url):
            logger.info("Keeping image object %s: referenced by %d order lines", url, referenced[url])
        elif url not in still_live:
            removable.append(url)

    failed = catalog_service.delete_objects(ctx.storage, removable, concurrency=ctx.delete_concurrency)
    if failed:
        logger.warning("Import job %s: %d image objects left in store", ctx.job_id, len(failed))


def _write(ctx: ImportContext, prepared: list[PreparedRow]) -> None:
    ok = [p for p in prepared if not p.failed and not p.skipped]
    new_rows = [p for p in ok if p.is_new]
    update_rows = [p for p in ok if not p.is_new]

    _insert_products(ctx, new_rows)
    _link_franchises(ctx, [p for p in ok if p.row.franchise_ids])
    ctx.registry.set_progress(ctx.job_id, INSERT_PROGRESS)

    _update_products(ctx, update_rows)
    ctx.registry.set_progress(ctx.job_id, UPDATE_PROGRESS)

    _write_images([p for p in ok if p.images is not None])
    ctx.registry.set_progress(ctx.job_id, IMAGE_PROGRESS)

    # uploads of rows that failed late are orphans as well
    stale = [url for p in ok for url in p.removed_images]
    stale += [url for p in prepared if p.failed for url in p.uploaded]
    _remove_unreferenced_objects(ctx, stale)


# ---------------------------------------------------------------------------
# Phase 4: delete-missing
# ---------------------------------------------------------------------------

def _seen_product_ids(ctx: ImportContext, prepared: list[PreparedRow]) -> set:
    seen = set()
    for prep in prepared:
        if prep.skipped:
            continue
        if not prep.failed and prep.product_id is not None:
            seen.add(prep.product_id)
        target = ctx.targets.get(prep.row.index)
        if target is not None:
            # a failed row that named an existing product still protects it
            seen.add(target.id)
    return seen


def _delete_missing(ctx: ImportContext, prepared: list[PreparedRow]) -> None:
    seen = _seen_product_ids(ctx, prepared)
    live_ids = [pid for (pid,) in db.session.query(Product.id).filter(Product.deleted_at.is_(None)).all()]
    missing = [pid for pid in live_ids if pid not in seen]
    if not missing:
        return

    referenced = catalog_service.product_order_counts(missing)
    for pid in missing:
        if referenced.get(pid):
            logger.info("Delete-missing: keeping product %s, referenced by %d order lines", pid, referenced[pid])
    deletable = [pid for pid in missing if not referenced.get(pid)]

    done = 0
    for chunk in catalog_service.chunked(deletable, DELETE_BATCH):
        products = db.session.query(Product).filter(Product.id.in_(chunk)).all()
        catalog_service.delete_products_cascade(
            products,
            ctx.storage,
            deleted_by=DELETED_BY,
            concurrency=ctx.delete_concurrency,
        )
        db.session.commit()
        done += len(products)
        ctx.registry.add_deleted(ctx.job_id, len(products))
        ctx.registry.set_progress(ctx.job_id, IMAGE_PROGRESS + (100 - IMAGE_PROGRESS) * done // len(deletable))

    logger.info("Import job %s: delete-missing removed %d products, kept %d", ctx.job_id, done, len(referenced))

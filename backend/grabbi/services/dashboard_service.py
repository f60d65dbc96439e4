# Overview: Simple count and sum aggregates for the admin and franchise dashboards.

from __future__ import annotations

from datetime import datetime, time

from sqlalchemy import func
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Franchise, FranchiseProduct, FranchiseStaff, Order, Product, User
from ..time_utils import utcnow
from .order_status import CONFIRMED, PENDING, PREPARING


OPEN_STATUSES = (PENDING, CONFIRMED, PREPARING)
RECENT_ORDERS = 10


def _start_of_today() -> datetime:
    return datetime.combine(utcnow().date(), time.min)


def _orders(franchise_id=None):
    q = db.session.query(Order).filter(Order.deleted_at.is_(None))
    if franchise_id is not None:
        q = q.filter(Order.franchise_id == franchise_id)
    return q


def _revenue(q) -> float:
    total = q.with_entities(func.coalesce(func.sum(Order.total), 0.0)).scalar()
    return round(float(total or 0.0), 2)


def franchise_dashboard(franchise_id) -> dict:
    today = _start_of_today()
    orders = _orders(franchise_id)
    recent = (
        orders.options(selectinload(Order.items))
        .order_by(Order.created_at.desc())
        .limit(RECENT_ORDERS)
        .all()
    )
    low_stock = (
        db.session.query(func.count(FranchiseProduct.id))
        .filter(
            FranchiseProduct.franchise_id == franchise_id,
            FranchiseProduct.is_available.is_(True),
            FranchiseProduct.stock_quantity <= FranchiseProduct.reorder_level,
        )
        .scalar()
    )
    return {
        "total_orders": orders.count(),
        "total_revenue": _revenue(orders),
        "today_orders": orders.filter(Order.created_at >= today).count(),
        "today_revenue": _revenue(orders.filter(Order.created_at >= today)),
        "pending_orders": orders.filter(Order.status.in_(OPEN_STATUSES)).count(),
        "low_stock_alerts": low_stock or 0,
        "staff_count": db.session.query(func.count(FranchiseStaff.id))
        .filter(FranchiseStaff.franchise_id == franchise_id)
        .scalar() or 0,
        "product_count": db.session.query(func.count(FranchiseProduct.id))
        .filter(FranchiseProduct.franchise_id == franchise_id)
        .scalar() or 0,
        "recent_orders": [o.to_dict() for o in recent],
    }


def admin_dashboard() -> dict:
    orders = _orders()
    return {
        "total_users": db.session.query(func.count(User.id)).filter(User.deleted_at.is_(None)).scalar() or 0,
        "total_products": db.session.query(func.count(Product.id)).filter(Product.deleted_at.is_(None)).scalar() or 0,
        "total_orders": orders.count(),
        "total_franchises": db.session.query(func.count(Franchise.id))
        .filter(Franchise.deleted_at.is_(None))
        .scalar() or 0,
        "total_revenue": _revenue(orders),
        "pending_orders": orders.filter(Order.status.in_(OPEN_STATUSES)).count(),
        "today_orders": orders.filter(Order.created_at >= _start_of_today()).count(),
    }

# Overview: Transactional email through Resend; every send is best-effort and off the request thread.

from __future__ import annotations

import html
import logging

import resend
from flask import current_app

from .background import run_in_background


logger = logging.getLogger(__name__)


def _first_name(name: str | None) -> str:
    name = (name or "").strip()
    return html.escape(name.split(" ")[0]) if name else "there"


def is_enabled() -> bool:
    cfg = current_app.config
    return not cfg.get("TESTING") and bool(cfg.get("RESEND_API_KEY"))


def send_email(to: str, subject: str, html_body: str) -> dict:
    """Synchronous send. Raises on provider errors; use dispatch() from request code."""
    resend.api_key = current_app.config["RESEND_API_KEY"]
    params = {
        "from": current_app.config["MAIL_FROM"],
        "to": [to],
        "subject": subject,
        "html": html_body,
    }
    response = resend.Emails.send(params)
    logger.info("Sent email '%s' to %s", subject, to)
    return response


def dispatch(to: str | None, subject: str, html_body: str) -> None:
    """Queue an email on a background thread. No-op (logged) when mail is disabled."""
    if not to:
        return
    if not is_enabled():
        logger.info("Email disabled, skipping '%s' to %s", subject, to)
        return
    app = current_app._get_current_object()
    run_in_background(app, send_email, to, subject, html_body, name="email")


def send_welcome(email: str, name: str | None) -> None:
    body = f"""<h2>Welcome to Grabbi, {_first_name(name)}!</h2>
<p>Thank you for creating your account. You can now:</p>
<ul>
<li>Browse and order from local stores</li>
<li>Earn loyalty points on every order</li>
<li>Track your deliveries</li>
</ul>
<p>The Grabbi Team</p>"""
    dispatch(email, "Welcome to Grabbi!", body)


def send_order_confirmation(email: str, name: str | None, order_number: str, total: float) -> None:
    body = f"""<h2>Order Confirmed!</h2>
<p>Hi {_first_name(name)},</p>
<p>Your order <strong>{html.escape(order_number)}</strong> has been placed successfully.</p>
<p>Order total: <strong>&pound;{total:.2f}</strong></p>
<p>We'll notify you when your order status changes.</p>
<p>The Grabbi Team</p>"""
    dispatch(email, f"Order Confirmed - {order_number}", body)


def send_order_status_update(email: str, name: str | None, order_number: str, status: str) -> None:
    body = f"""<h2>Order Status Update</h2>
<p>Hi {_first_name(name)},</p>
<p>Your order <strong>{html.escape(order_number)}</strong> status has been updated to: <strong>{status.replace('_', ' ')}</strong></p>
<p>The Grabbi Team</p>"""
    dispatch(email, f"Order {order_number} - Status Update", body)


def send_password_reset(email: str, name: str | None, reset_token: str, frontend_url: str) -> None:
    link = f"{frontend_url.rstrip('/')}/reset-password?token={reset_token}"
    body = f"""<h2>Password Reset Request</h2>
<p>Hi {_first_name(name)},</p>
<p>We received a request to reset your password. Use the link below to set a new one:</p>
<p><a href="{html.escape(link)}">Reset Password</a></p>
<p>This link will expire in 1 hour. If you didn't request this, you can ignore this email.</p>
<p>The Grabbi Team</p>"""
    dispatch(email, "Reset Your Password - Grabbi", body)


def send_staff_invitation(email: str, name: str | None, franchise_name: str, role: str, portal_url: str) -> None:
    body = f"""<h2>You've been added to {html.escape(franchise_name)}</h2>
<p>Hi {_first_name(name)},</p>
<p>You now have <strong>{html.escape(role)}</strong> access to the franchise portal.</p>
<p><a href="{html.escape(portal_url)}">Open the portal</a></p>
<p>The Grabbi Team</p>"""
    dispatch(email, f"You've joined {franchise_name} on Grabbi", body)

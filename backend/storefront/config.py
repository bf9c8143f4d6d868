# backend/storefront/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///storefront.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment gateway (Paystack-compatible API)
    PAYSTACK_SECRET_KEY = os.environ.get("PAYSTACK_SECRET_KEY", "")
    PAYSTACK_BASE_URL = os.environ.get("PAYSTACK_BASE_URL", "https://api.paystack.co")
    PAYSTACK_CALLBACK_URL = os.environ.get("PAYSTACK_CALLBACK_URL", "http://localhost:5173/payment/callback")
    PAYMENT_GATEWAY_TIMEOUT = float(os.environ.get("PAYMENT_GATEWAY_TIMEOUT", "10"))
    STORE_CURRENCY = os.environ.get("STORE_CURRENCY", "NGN")

    # Shown to customers who pick bank transfer at checkout
    BANK_ACCOUNT_NAME = os.environ.get("BANK_ACCOUNT_NAME", "Lulu Artistry Ltd")
    BANK_ACCOUNT_NUMBER = os.environ.get("BANK_ACCOUNT_NUMBER", "0000000000")
    BANK_NAME = os.environ.get("BANK_NAME", "Example Bank")

    # Studio hours for booking slots (24h clock, 1-hour slots)
    BOOKING_OPENING_HOUR = int(os.environ.get("BOOKING_OPENING_HOUR", "8"))
    BOOKING_CLOSING_HOUR = int(os.environ.get("BOOKING_CLOSING_HOUR", "18"))
    BOOKING_CANCELLATION_WINDOW_HOURS = int(os.environ.get("BOOKING_CANCELLATION_WINDOW_HOURS", "24"))

    # Used by `flask orders expire-unpaid`
    UNPAID_ORDER_EXPIRY_HOURS = int(os.environ.get("UNPAID_ORDER_EXPIRY_HOURS", "72"))

    NOTIFICATION_FROM_EMAIL = os.environ.get("NOTIFICATION_FROM_EMAIL", "orders@luluartistry.local")

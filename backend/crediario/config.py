# backend/crediario/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/crediario.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///crediario.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Account numbers look like CR0001, CR0002, ...
    CREDIT_ACCOUNT_PREFIX = os.environ.get("CREDIT_ACCOUNT_PREFIX", "CR")
    CREDIT_ACCOUNT_NUMBER_PAD = int(os.environ.get("CREDIT_ACCOUNT_NUMBER_PAD", "4"))

    MAX_INSTALLMENTS = int(os.environ.get("MAX_INSTALLMENTS", "24"))
    DEFAULT_PAYMENT_FREQUENCY = os.environ.get("DEFAULT_PAYMENT_FREQUENCY", "MONTHLY")

    STOCK_HISTORY_PAGE_SIZE = int(os.environ.get("STOCK_HISTORY_PAGE_SIZE", "200"))

"""
Database Configuration and Session Management
============================================

This module provides the main database engine, session factory, and table creation
functionality for the AfroFuture ticket sales bot.
"""

import logging
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from config import Config
from models import Base

logger = logging.getLogger(__name__)

# Database engine with connection pooling
if not Config.DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is required")

IS_SQLITE = Config.DATABASE_URL.startswith("sqlite")

if IS_SQLITE:
    # Local runs and tests: one shared connection so an in-memory database survives across sessions
    engine = create_engine(
        Config.DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )
else:
    engine = create_engine(
        Config.DATABASE_URL,
        poolclass=QueuePool,
        pool_size=5,           # Base pool shared by chat handlers, webhooks and jobs
        max_overflow=10,       # Burst capacity for reminder sweeps
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        pool_timeout=30,       # Wait max 30 seconds for connection during bursts
        echo=False,
        connect_args={
            "connect_timeout": 10,
            "application_name": "afrofuture_ticket_bot",
        }
    )

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine
)


def create_tables():
    """Create all database tables if they don't exist"""
    try:
        logger.info("🏗️ Creating database tables (if they don't exist)...")

        # Import all models to register them with Base.metadata
        from models import (  # noqa: F401
            TicketSession, Payment, Coupon, ReminderTemplate, ReminderLog,
            WalletTransfer, SystemConfig
        )

        logger.info(f"📊 Found {len(Base.metadata.tables)} table models to create")
        Base.metadata.create_all(bind=engine, checkfirst=True)

        from sqlalchemy import inspect
        existing_tables = inspect(engine).get_table_names()
        logger.info(f"✅ Database schema verified: {len(existing_tables)} tables available")
        logger.info(f"📋 Tables: {', '.join(sorted(existing_tables))}")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to create database tables: {e}", exc_info=True)
        return False


def test_connection():
    """Test database connection"""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            logger.info("✅ Database connection test successful")
            return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False

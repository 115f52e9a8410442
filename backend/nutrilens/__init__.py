"""
NutriLens Backend: Application Package
======================================

What: Food-photo calorie estimation API with a prepaid per-user credit ledger.
Who:  Imported by uvicorn (nutrilens.main:app), Alembic, and pytest.

Layers:

    ┌─────────────────────────────────────┐
    │   Routes + Dependencies (HTTP)      │  ← request parsing, auth gate
    ├─────────────────────────────────────┤
    │   Services (business logic)         │  ← ledger, users, analysis, Gemini
    ├─────────────────────────────────────┤
    │   Models & Schemas (data)           │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Database (persistence)            │  ← async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Routes never touch credit counters directly; every balance change goes
    through services.credit_ledger.CreditLedger.
"""

__version__ = "1.0.0"

# Importing the models registers their tables on Base.metadata (Alembic, tests)
from nutrilens.models.credit_transaction import CreditTransaction, TransactionKind
from nutrilens.models.food_analysis import FoodAnalysis
from nutrilens.models.user import User

__all__ = ["CreditTransaction", "FoodAnalysis", "TransactionKind", "User"]

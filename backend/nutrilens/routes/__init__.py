"""
NutriLens Backend: API Routes Package
=====================================

Route Inventory:
    - users.py:          /api/users (register, login, Google sign-in, profile, admin)
    - credits.py:        /api/credits (balance, history, admin refill/reset/audit)
    - estimate.py:       POST /api/estimate-calories (paid)
    - food_analyses.py:  /api/food-analyses (history, detail, delete, image)
    - health.py:         GET /health

Routes stay thin: parse the request, resolve the caller, call a service.
"""

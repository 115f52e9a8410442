"""
NutriLens Backend: Services Layer
=================================

Service Inventory:
    - CreditLedger:     per-account credit counters + append-only transaction log
    - UserService:      registration, sign-in, API keys, admin user edits
    - GoogleTokenVerifier: Google ID token validation (tokeninfo endpoint)
    - LLMService (abstract) / GeminiService: food photo analysis
    - nutrition_parser: Gemini JSON → normalised NutritionEstimate
    - FileService:      image validation, storage and cleanup
    - AnalysisService:  validate → consume → analyze → parse → persist
"""

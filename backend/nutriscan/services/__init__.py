# Services package init
"""
NutriScan Backend — Services Layer
===================================

What:  Business logic between the routes (HTTP) and the imaging pipeline,
       the OpenFoodFacts API and the database.

Service Inventory:
    - BarcodeService:      scan pipeline orchestration (threadpool offload,
                           input guards, lookup degradation)
    - OpenFoodFactsClient: product lookup + search, circuit breaker, retry
    - TransactionService:  audit log writes (background) and reads

Each service has a module-level singleton and, where routes need to swap it
in tests, a `get_*` dependency provider.
"""

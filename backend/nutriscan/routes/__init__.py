# Routes package init
"""
NutriScan Backend — API Routes Package
=======================================

Route Inventory:
    - barcode.py:        POST /api/barcode/scan                (decode + product lookup)
                         POST /api/barcode/read                (decode only)
    - openfoodfacts.py:  GET  /api/openfoodfacts/product/{barcode}
                         GET  /api/openfoodfacts/search
    - transactions.py:   GET  /api/transactions                (audit log, paginated)
                         GET  /api/transactions/{id}
    - health.py:         GET  /health

Routes stay thin: pull data out of the request, call a service, set
headers. Errors are raised as NutriScanError subclasses and formatted by
the global handlers in main.py.
"""

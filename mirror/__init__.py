"""mirror/ -- Bulk user mirror: flat-file format, file store, and store reconciliation.

Layer rule: mirror/ may import from auth/ and core/. It does NOT import from api/.
"""

"""auth/ -- Credential store, lockout, tokens, refresh-token ledger, and sessions.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or mirror/ -- with one exception: bootstrap.py
composes the startup graph and may import mirror/.
api/ and mirror/ import from auth/, not the other way around.
"""

"""auth/ -- Accounts, sessions and password recovery for the CRM auth service.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or licensing/.
api/ imports from auth/, not the other way around.
"""

"""licensing/ -- Plan licenses attached one-to-one to users.

Layer rule: licensing/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or auth/.
"""

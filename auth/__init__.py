"""auth/ -- Accounts, sessions and password recovery for Packspace.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
core/config.py for settings. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""

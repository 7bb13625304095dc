"""auth/ -- Google sign-in and cookie session package for ResumeLens.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/ or kv/.
api/ imports from auth/, not the other way around.
"""

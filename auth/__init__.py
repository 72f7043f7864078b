"""auth/ -- Authentication and authorization package for Scribe.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, web/ or blog/.
api/, web/ and blog/ import from auth/, not the other way around.
"""

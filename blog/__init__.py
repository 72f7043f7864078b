"""blog/ -- Posts, comments and the handler-level operations over them.

Layer rule: blog/ may import from auth/ and core/. It does NOT import from
api/ or web/.
"""

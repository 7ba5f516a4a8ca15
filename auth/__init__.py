"""auth/ -- Authentication and authorization package for Falcons.

Layer rule: auth/ imports stdlib, third-party libraries and core/ only.
It does NOT import from api/, courses/, or mail/.
api/ imports from auth/, not the other way around.
"""

"""courses/ -- Course catalog, enrollment and progress persistence.

Layer rule: courses/ imports stdlib, third-party libraries and core/ only.
"""

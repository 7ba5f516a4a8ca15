"""mail/ -- Outbound transactional email (verification, password reset, welcome).

Layer rule: mail/ imports stdlib, third-party libraries and core/ only.
"""

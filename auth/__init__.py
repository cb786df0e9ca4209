"""auth/ -- Authentication and authorization package for TinyAuth.

Entry points live in auth.instance: create_auth_instance(),
get_auth_instance() and the AuthInstance facade they return.

Layer rule: auth/ imports stdlib, third-party libraries and core/ only.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""

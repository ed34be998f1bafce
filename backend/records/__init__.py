# records/__init__.py
"""
Records app - the per-school data store.

Models here are TENANT models: the router sends them to the current
school's database and tenant.collections scopes every query by
school_code.
"""

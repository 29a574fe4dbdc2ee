"""
Accounts module: registration, login lookup, password changes and admin user management.
"""

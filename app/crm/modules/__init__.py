"""
Feature modules. Each keeps its service functions in service.py and its JSON
blueprint in admin.py.
"""

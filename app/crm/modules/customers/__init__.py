"""
Customers module.

Scope:
- Customer list (ownership-scoped, free-text search, paginated newest-first)
- Create / status / transaction status / notes / affiliation / delete
- Transaction details (sale line items) per customer

Every write goes through the single ownership guard in app.crm.access.
"""

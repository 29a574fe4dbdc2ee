"""
Central constants for the CRM application.
"""
from __future__ import annotations

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_STAFF = "staff"
ROLE_GUEST = "guest"

ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, ROLE_GUEST)

# Roles that see and modify every customer
PRIVILEGED_ROLES = frozenset({ROLE_ADMIN, ROLE_MANAGER})

# Identity used when there is no session
ANONYMOUS_USERNAME = "未知用户"

# Customer situation labels, in analysis column order
CUSTOMER_STATUSES = ("进群", "已退群", "已圈上", "被拉黑", "封号失联", "重复", "返回")
DEFAULT_CUSTOMER_STATUS = "新客户"
ALLOWED_CUSTOMER_STATUSES = frozenset(CUSTOMER_STATUSES) | {DEFAULT_CUSTOMER_STATUS}

TRANSACTION_DONE = "已成交"
TRANSACTION_NOT_DONE = "未成交"
TRANSACTION_FOLLOW_UP = "待跟进"
TRANSACTION_STATUSES = (TRANSACTION_DONE, TRANSACTION_NOT_DONE, TRANSACTION_FOLLOW_UP)
DEFAULT_TRANSACTION_STATUS = TRANSACTION_NOT_DONE

# Synthetic bucket for customers without an affiliation
UNASSIGNED_AFFILIATION = "无归属"

DASHBOARD_PERIODS = ("current_week", "last_week", "last_two", "last_month", "last_quarter")
DEFAULT_DASHBOARD_PERIOD = "current_week"

"""
Centralized topic constants for the event bus.

Topic names mirror the external transport so that a bridge can map them one-to-one.
"""

# Inbound
T_LOTS = "lots"
T_RISK_REQUEST = "risk-check-request"
T_MARKET_STATUS = "market-status"

# Outbound
T_RISK_RESPONSE = "risk-check-response"

# Control topics
T_CONTROL = "control"
T_LOG = "log.event"

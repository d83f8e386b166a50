"""
auth — caller authentication for the connector routes.

Provides:
  • Signed bearer-token creation & verification
  • ``Identity`` (user id, role, organisation, privilege tier)
  • ``get_current_user_id`` / ``get_identity`` FastAPI dependencies
"""

"""
connectors — OAuth credential vault and provider aggregation.

Provides:
  • AES-256-GCM encryption of tokens and client secrets at rest
  • ``env:`` / encrypted / plaintext credential resolution
  • OAuth2 authorization URL generation and callback completion
  • Per-user token refresh (lazy on 401, proactive for short-lived tokens)
  • Provider adapters normalised into one summary shape
  • Concurrent aggregation with per-provider isolation
  • One-shot migration of plaintext secrets

Each provider (QuickBooks, Stripe, HubSpot, …) is a subclass of BaseConnector.
"""

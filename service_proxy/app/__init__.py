"""
Card Proxy Service package.

The proxy fronts a pay-per-call AI completion service, admitting each
request only after:
- Authentication: optional bearer token or static app token
- Signature: HMAC with timestamp freshness and replay protection
- Rate limiting: sliding window with escalating bans
- Quota: two-phase reservation of usage units per period

Structure:
- app.main: FastAPI app, routes, and service wiring.
- app.store: Coordination store contract, Redis and local backends.
- app.security: Signature verification, replay guard, auth guard.
- app.ratelimit: Sliding-window limiter.
- app.quota: Quota ledger.
- app.adapters: Resilient HTTP client for the downstream AI service.
- app.domain: Admission pipeline, request validation, prompts.
"""

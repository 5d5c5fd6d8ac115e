"""
Donor Sync Service

Reconciles Stripe and every.org donations into a single donor list with:
- Checkout session matching and per-payer deduplication
- Consent-gated handling of every.org supporters
- Manual overrides from donor_info.toml
- Monthly membership metrics
"""

__version__ = "0.1.0"

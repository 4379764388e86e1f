"""Student Suite backend API.

FastAPI-based backend for the Student Suite apps, providing:
- AI generation with provider failover and monthly spend caps (Firestore ledger)
- Stripe and App Store / Google Play entitlement reconciliation (Firebase Auth claims)
- Referral tracking and founder badges
- Trigger endpoints for Firestore, Auth and scheduled events

Security: Firebase Auth tokens required for all callable endpoints.
"""

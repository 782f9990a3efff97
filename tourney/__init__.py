"""
Tourney - Competitive integrity engine for team tournaments

Responsibilities:
- Team rosters (role slots, substitutes, captaincy)
- Direct invites and shareable invite links
- Tournament registration, approval and waitlist
- Match lifecycle and result disputes
"""

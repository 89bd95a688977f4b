"""Browser automation modules (Playwright, async API).

Session lifecycle lives in ``session_pool`` and ``launcher``; page
interaction in ``console`` and ``auth``; diagnostics in ``artifacts``.
"""

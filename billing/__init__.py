"""billing/ -- Stripe subscriptions: plan catalog, persistence, reconciler.

Layer rule: billing/ imports only core/ and third-party libraries.
api/ imports from billing/, not the other way around.
"""

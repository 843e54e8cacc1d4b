"""
storefront: pipeline panier -> paiement -> commande (FastAPI + Supabase + Stripe).
"""

# digilib/api/__init__.py
from digilib.api.routers import cart, downloads, health, stats

ROUTERS = (health.router, cart.router, downloads.router, stats.router)

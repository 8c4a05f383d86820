"""Routes package for the credits API"""
from .checkout import router as checkout_router
from .credits import router as credits_router
from .generations import router as generations_router
from .webhook import router as webhook_router

__all__ = ['checkout_router', 'credits_router', 'generations_router', 'webhook_router']

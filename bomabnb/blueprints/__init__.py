from .admin import admin_bp
from .agent import agent_bp
from .auth import auth_bp
from .partner import partner_bp
from .public import public_bp

ALL_BLUEPRINTS = (auth_bp, public_bp, partner_bp, agent_bp, admin_bp)

__all__ = ["ALL_BLUEPRINTS", "admin_bp", "agent_bp", "auth_bp", "partner_bp", "public_bp"]

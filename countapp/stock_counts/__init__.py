from .cli import register_cli
from .public import bp as public_bp
from .routes import bp

__all__ = ["bp", "public_bp", "register_cli"]

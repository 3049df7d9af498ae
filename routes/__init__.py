from .password import password_bp

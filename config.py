import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to this module as authcore.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "authcore.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "sql" keeps attempts/MFA/history in the database, "memory" keeps them in-process
    SECURITY_STORE_BACKEND = os.getenv("SECURITY_STORE_BACKEND", "sql")

    # Brute-force protection
    MAX_LOGIN_ATTEMPTS = 5
    LOGIN_WINDOW_MINUTES = 15           # older failures are forgiven
    LOCKOUT_MINUTES = 15

    # MFA (TOTP + backup codes)
    MFA_ISSUER = os.getenv("MFA_ISSUER", "Contract Management System")
    MFA_BACKUP_CODE_COUNT = 10
    MFA_BACKUP_CODE_BYTES = 6           # 12 hex chars per code, matches codes already issued
    MFA_TOTP_VALID_WINDOW = 0           # pyotp default, no drift steps

    # Password policy
    PASSWORD_HISTORY_COUNT = 5          # block last 5 passwords
    BREACH_API_URL = os.getenv("BREACH_API_URL", "https://api.pwnedpasswords.com/range/")
    BREACH_API_TIMEOUT_SECONDS = float(os.getenv("BREACH_API_TIMEOUT_SECONDS", "5"))
    BREACH_API_USER_AGENT = "Contract-Management-System"

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECURITY_STORE_BACKEND = "sql"

# config.py
import os
from dotenv import load_dotenv, find_dotenv

# 1) tenta .env.local na raiz do projeto
load_dotenv(find_dotenv(".env.local", usecwd=True))
# 2) fallback para .env, se existir
load_dotenv()


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///app.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    PORT = int(os.getenv("PORT", "3001"))

    # Supabase Configuration
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")

    # Cache (simple, redis, memcached)
    CACHE_TYPE = os.getenv("CACHE_TYPE", "SimpleCache")

    # Realtime: escuta mudanças em clients e no schema public
    REALTIME_ENABLED = _env_flag("REALTIME_ENABLED")

    # Contratos
    DEFAULT_DUE_DAY = int(os.getenv("DEFAULT_DUE_DAY", "20"))

    # Verificação periódica de integridade dos contratos
    MONITOR_ENABLED = _env_flag("MONITOR_ENABLED")
    MONITOR_INTERVAL_MINUTES = int(os.getenv("MONITOR_INTERVAL_MINUTES", "60"))
    MONITOR_REPAIR = _env_flag("MONITOR_REPAIR")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    CACHE_TYPE = "NullCache"
    REALTIME_ENABLED = False
    MONITOR_ENABLED = False

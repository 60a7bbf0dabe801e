import os
from dotenv import load_dotenv

load_dotenv()

# --- База Данных ---
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_NAME = os.getenv("DB_NAME")
DB_HOST = os.getenv("DB_HOST", "localhost")
# Порт с учетом Яндекса
DB_PORT = os.getenv("DB_PORT", "6432" if "yandexcloud" in str(DB_HOST) else "5432")

if os.getenv("DATABASE_URL"):
    DATABASE_URL = os.getenv("DATABASE_URL")
elif DB_NAME:
    DATABASE_URL = f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
else:
    DATABASE_URL = "sqlite:///./salon.db"

# --- Telegram ---
BOT_TOKEN = os.getenv("BOT_TOKEN")
# Чат администраторов салона для служебных уведомлений
ADMIN_CHAT_ID = os.getenv("ADMIN_CHAT_ID")

# Общий токен бота / WebApp для клиентских запросов к API
API_TOKEN = os.getenv("API_TOKEN", "dev-api-token")

# --- АДМИНИСТРАТОР ---
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin")

# --- Расписание ---
SALON_TIMEZONE = os.getenv("SALON_TIMEZONE", "Europe/Moscow")
SLOT_STEP_MINUTES = int(os.getenv("SLOT_STEP_MINUTES", 30))
# Минимальный запас времени до начала записи
BOOKING_LEAD_MINUTES = int(os.getenv("BOOKING_LEAD_MINUTES", 0))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Заполнить пустую БД демо-данными при старте API
SEED_DEMO_DATA = os.getenv("SEED_DEMO_DATA", "false").lower() in ("1", "true", "yes")

# --- Напоминания ---
# За сколько часов до начала напоминать клиенту (через запятую)
REMINDER_INTERVALS_HOURS = [int(h) for h in os.getenv("REMINDER_INTERVALS_HOURS", "24,2").split(",") if h.strip()]
REMINDER_LOOKAHEAD_HOURS = int(os.getenv("REMINDER_LOOKAHEAD_HOURS", 48))

# --- Запуск API ---
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", 8000))

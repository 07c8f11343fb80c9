from dotenv import load_dotenv
from pathlib import Path
import os

# Load environment variables
DOTENV_PATH = Path(__file__).resolve().parent.parent / '.env'
load_dotenv(dotenv_path=DOTENV_PATH)


def _env_int(name: str, default: str = '') -> int | None:
    raw = os.getenv(name, default)
    raw = raw.split('#')[0].strip().strip('"').strip("'")
    return int(raw) if raw else None


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


DISCORD_BOT_TOKEN = os.getenv('DISCORD_BOT_TOKEN')
MAIN_GUILD_ID = _env_int('MAIN_GUILD_ID')
INBOX_GUILD_ID = _env_int('INBOX_GUILD_ID')
LOG_CHANNEL_ID = _env_int('LOG_CHANNEL_ID')
INBOX_CATEGORY_ID = _env_int('INBOX_CATEGORY_ID')

PREFIX = os.getenv('PREFIX', '!')
SNIPPET_PREFIX = os.getenv('SNIPPET_PREFIX', '!!')
STATUS = os.getenv('STATUS', 'Message me for help!')
ALWAYS_REPLY = _env_bool('ALWAYS_REPLY')
ALWAYS_REPLY_ANON = _env_bool('ALWAYS_REPLY_ANON')
INBOX_SERVER_PERMISSION = os.getenv('INBOX_SERVER_PERMISSION', 'manage_messages')

MYSQL_HOST = os.getenv('MYSQL_HOST')
MYSQL_USER = os.getenv('MYSQL_USER')
MYSQL_PASSWORD = os.getenv('MYSQL_PASSWORD')
MYSQL_DATABASE = os.getenv('MYSQL_DATABASE')
MYSQL_PORT = _env_int('MYSQL_PORT', '3306')

LOGS_DIR = Path(os.getenv('LOGS_DIR', 'logs'))
ATTACHMENTS_DIR = Path(os.getenv('ATTACHMENTS_DIR', 'attachments'))
LOG_URL_BASE = os.getenv('LOG_URL_BASE', 'http://localhost:8890').rstrip('/')
ATTACHMENT_URL_BASE = os.getenv('ATTACHMENT_URL_BASE', LOG_URL_BASE).rstrip('/')

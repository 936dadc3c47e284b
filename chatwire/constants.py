# chatwire/constants.py

APP_NAME = "chatwire"
__version__ = "0.4.0"
SETTINGS_SCHEMA = 1
DEFAULT_LOG_FILENAME = "chatwire.log"
DEFAULT_SETTINGS_FILENAME = "settings.json"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5

# Provider endpoints
OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
GROQ_CHAT_URL = "https://api.groq.com/openai/v1/chat/completions"
OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"
CLAUDE_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_OLLAMA = "http://localhost:11434"
ANTHROPIC_VERSION = "2023-06-01"
CLAUDE_DEFAULT_MAX_TOKENS = 2048

# Context budget
CONTEXT_RESERVE_TOKENS = 300       # prompt scaffolding
CONTEXT_FALLBACK_TOKENS = 4000     # when the local model's context size is unknown
HOSTED_CONTEXT_TOKENS = 100_000    # effectively single-pass for hosted providers
METADATA_TTL_SECONDS = 300
CHUNK_OVERLAP_TOKENS = 100
TOKENS_PER_CHAR = 0.35

# HTTP
CONNECT_TIMEOUT = 10
READ_TIMEOUT = 300
METADATA_TIMEOUT = 3

import os
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables from .env file with explicit path
load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env')

# OpenAI Configuration
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_TIMEOUT_SECONDS = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "60"))
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o")
# Used for chunk splitting and query expansion (JSON output)
STRUCTURED_MODEL = os.getenv("STRUCTURED_MODEL", "gpt-4o")
MAX_OUTPUT_TOKENS = int(os.getenv("MAX_OUTPUT_TOKENS", "2000"))

# Embedding Configuration
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))

# Knowledge Store Configuration (ChromaDB)
CHROMA_PERSIST_DIR = os.getenv(
    "CHROMA_PERSIST_DIR",
    str(Path(__file__).parent / "rag" / "chroma_db"),
)
CHUNK_COLLECTION_NAME = os.getenv("CHUNK_COLLECTION_NAME", "knowledge_chunks")

# Conversation Log Configuration (SQLite)
CHAT_LOG_DB_PATH = os.getenv("CHAT_LOG_DB_PATH", "chatbot/chat_logs.db")

# Chunking
MAX_CHUNK_SIZE = int(os.getenv("MAX_CHUNK_SIZE", "350"))  # characters

# Retrieval
QUERY_VARIANTS = 3
SEARCH_NUM_CANDIDATES = int(os.getenv("SEARCH_NUM_CANDIDATES", "10"))
SEARCH_LIMIT = int(os.getenv("SEARCH_LIMIT", "5"))

# Tool loop
MAX_TOOL_STEPS = int(os.getenv("MAX_TOOL_STEPS", "3"))

# Persona
INSTITUTION_NAME = os.getenv("INSTITUTION_NAME", "Haaga-Helia")
ASSISTANT_NAME = os.getenv("ASSISTANT_NAME", "Lumi")
CRISIS_LINE = os.getenv("CRISIS_LINE", "Finnish Crisis Helpline 09 2525 0113")

# Include internal error detail in HTTP error bodies
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
